"""
Database models for the doctor/hospital directory.

The tables mirror the Supabase schema the admin front-end edits, so the
``db_table`` names are fixed.  The uniqueness constraints declared here
are what make the importer re-runnable: a second import hits them and
is reconciled instead of creating duplicates.
"""
from __future__ import annotations

import uuid
from django.db import models


class Hospital(models.Model):
    """A hospital, identified by its name."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'hospitals'

    def __str__(self) -> str:
        return self.name


class Doctor(models.Model):
    """A doctor profile as exported from the public website.

    ``permalink`` is the natural key used by the importer.  It is
    nullable because doctors created by hand in the admin have none.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255, blank=True, default='')
    full_name = models.CharField(max_length=255, blank=True, default='')
    disciplines = models.TextField(blank=True, default='')
    phone1 = models.CharField(max_length=50, blank=True, default='')
    phone2 = models.CharField(max_length=50, blank=True, default='')
    phone3 = models.CharField(max_length=50, blank=True, default='')
    email = models.CharField(max_length=255, blank=True, default='')
    bio_link = models.BooleanField(default=False)
    permalink = models.CharField(max_length=255, unique=True, null=True, blank=True)
    # manage_doctors reset-status sets this back to null
    status = models.CharField(max_length=50, null=True, blank=True, default='publish')
    created_at = models.DateTimeField(auto_now_add=True)
    hospitals = models.ManyToManyField(Hospital, through='DoctorHospital', related_name='doctors')

    class Meta:
        db_table = 'doctors'

    def __str__(self) -> str:
        return self.full_name or self.title or str(self.id)


class DoctorHospital(models.Model):
    """Links a doctor to a hospital they practise at."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor = models.ForeignKey(Doctor, on_delete=models.CASCADE, related_name='hospital_links')
    hospital = models.ForeignKey(Hospital, on_delete=models.CASCADE, related_name='doctor_links')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'doctor_hospitals'
        unique_together = [('doctor', 'hospital')]

    def __str__(self) -> str:
        return f"{self.doctor} at {self.hospital}"
