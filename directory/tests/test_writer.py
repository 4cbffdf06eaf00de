"""
Tests for the reconciling writer.

Each fallback stage is driven through :class:`MemoryStore`, whose
scripted failures let a test pick exactly which stage has to recover.
The last tests run the writer against the Django database to check the
real uniqueness constraints.
"""
import pytest

from directory.exceptions import StoreError
from directory.models import Doctor, DoctorHospital, Hospital
from directory.services.normalize import DoctorEntity, normalize
from directory.services.records import RawRecord
from directory.services.store import OrmStore
from directory.services.writer import (
    DOCTORS, HOSPITALS, LINKS, ReconcilePolicy, ReconcilingWriter, Stage,
)


def doctor(permalink, **fields):
    values = dict(title='', full_name='', disciplines='', phone1='', phone2='', phone3='',
                  email='', bio_link=False, permalink=permalink, status='publish')
    values.update(fields)
    return DoctorEntity(**values)


def doctors(*permalinks):
    return {p: doctor(p) for p in permalinks}


# -- policy stages ------------------------------------------------------------

def test_bulk_insert_stage_reports_ids(memory_store):
    result = ReconcilePolicy(memory_store).bulk_insert(HOSPITALS, [{'name': 'H1'}], key='name')
    assert result.ok and result.stage == Stage.BULK_INSERT
    assert list(result.ids) == ['H1']


def test_bulk_insert_stage_marks_duplicates(memory_store):
    memory_store.seed(HOSPITALS, name='H1')
    result = ReconcilePolicy(memory_store).bulk_insert(HOSPITALS, [{'name': 'H1'}], key='name')
    assert not result.ok
    assert result.duplicate
    assert 'duplicate' in result.reason


def test_row_lookup_stage_not_found(memory_store):
    result = ReconcilePolicy(memory_store).row_lookup(DOCTORS, 'permalink', 'dr-x')
    assert not result.ok
    assert result.stage == Stage.ROW_LOOKUP


def test_refetch_stage_failure_is_a_result(memory_store):
    memory_store.fail('select', HOSPITALS, StoreError('connection reset'))
    result = ReconcilePolicy(memory_store).refetch(HOSPITALS, 'name')
    assert not result.ok and result.reason == 'connection reset'


# -- hospitals ----------------------------------------------------------------

def test_hospitals_clean_insert(memory_store):
    outcome = ReconcilingWriter(memory_store).write_hospitals(['H1', 'H2'])
    assert outcome.stage_names() == [Stage.BULK_INSERT]
    assert outcome.ready == 2
    assert len(memory_store.ops('insert', HOSPITALS)) == 1


def test_hospitals_duplicate_recovers_every_id(memory_store):
    existing = memory_store.seed(HOSPITALS, name='H1')
    outcome = ReconcilingWriter(memory_store).write_hospitals(['H1', 'H2'])
    assert outcome.stage_names() == [Stage.BULK_INSERT, Stage.REFETCH, Stage.REMAINDER_INSERT]
    assert outcome.ids['H1'] == existing['id']
    assert outcome.missing == []
    assert memory_store.ops('insert', HOSPITALS) == [('insert', HOSPITALS, 2), ('insert', HOSPITALS, 1)]
    assert memory_store.count(HOSPITALS) == 2


def test_hospitals_duplicate_on_rerun_resolves_all(memory_store):
    first = ReconcilingWriter(memory_store).write_hospitals(['H1', 'H2', 'H3'])
    second = ReconcilingWriter(memory_store).write_hospitals(['H1', 'H2', 'H3'])
    assert second.stage_names() == [Stage.BULK_INSERT, Stage.REFETCH]
    assert second.ids == first.ids
    assert second.missing == []
    assert memory_store.count(HOSPITALS) == 3


def test_hospitals_safety_refetch_after_failed_refetch(memory_store):
    memory_store.seed(HOSPITALS, name='H1')
    memory_store.fail('select', HOSPITALS, StoreError('timeout'))
    outcome = ReconcilingWriter(memory_store).write_hospitals(['H1'])
    assert outcome.stage_names() == [Stage.BULK_INSERT, Stage.REFETCH, Stage.SAFETY_REFETCH]
    assert outcome.missing == []


def test_no_hospitals_makes_no_calls(memory_store):
    outcome = ReconcilingWriter(memory_store).write_hospitals([])
    assert outcome.stages == []
    assert memory_store.calls == []


# -- doctors ------------------------------------------------------------------

def test_doctors_inserted_in_batches_of_fifty(memory_store):
    progress = []
    writer = ReconcilingWriter(memory_store, progress=lambda t, done, total: progress.append((t, done, total)))
    outcome = writer.write_doctors(doctors(*('dr-%d' % i for i in range(120))))
    assert [c[2] for c in memory_store.ops('insert', DOCTORS)] == [50, 50, 20]
    assert outcome.ready == 120
    assert progress == [(DOCTORS, 50, 120), (DOCTORS, 100, 120), (DOCTORS, 120, 120)]


def test_doctor_batch_failure_falls_back_to_rows(memory_store):
    existing = memory_store.seed(DOCTORS, permalink='dr-b')
    outcome = ReconcilingWriter(memory_store).write_doctors(doctors('dr-a', 'dr-b', 'dr-c'))
    assert outcome.stage_names() == [
        Stage.BULK_INSERT,
        Stage.ROW_INSERT,
        Stage.ROW_INSERT, Stage.ROW_LOOKUP,
        Stage.ROW_INSERT,
    ]
    assert outcome.ids['dr-b'] == existing['id']
    assert outcome.missing == []
    assert memory_store.count(DOCTORS) == 3


def test_doctor_neither_written_nor_found_is_reported(memory_store):
    memory_store.fail('insert', DOCTORS, StoreError('bad gateway'), StoreError('bad gateway'))
    outcome = ReconcilingWriter(memory_store).write_doctors(doctors('dr-a'))
    assert outcome.stage_names() == [
        Stage.BULK_INSERT, Stage.ROW_INSERT, Stage.ROW_LOOKUP, Stage.SAFETY_REFETCH,
    ]
    assert outcome.missing == ['dr-a']
    assert outcome.ready == 0


def test_doctor_non_duplicate_batch_error_still_inserts_rows(memory_store):
    memory_store.fail('insert', DOCTORS, StoreError('payload too large', status=413))
    outcome = ReconcilingWriter(memory_store).write_doctors(doctors('dr-a', 'dr-b'))
    assert outcome.ready == 2
    assert memory_store.count(DOCTORS) == 2


# -- links --------------------------------------------------------------------

def test_links_resolved_and_orphans_dropped(memory_store):
    writer = ReconcilingWriter(memory_store)
    outcome = writer.write_links(
        [('dr-a', 'H1'), ('dr-a', 'H2'), ('dr-x', 'H1'), ('dr-a', 'H-missing')],
        hospital_ids={'H1': 'h1', 'H2': 'h2'},
        doctor_ids={'dr-a': 'd1'},
    )
    assert outcome.created == 2
    assert outcome.orphaned == 2
    assert {(r['doctor_id'], r['hospital_id']) for r in memory_store.tables[LINKS]} == {('d1', 'h1'), ('d1', 'h2')}


def test_links_with_same_ids_are_sent_once(memory_store):
    outcome = ReconcilingWriter(memory_store).write_links(
        [('dr-a', 'H1'), ('dr-a-alias', 'H1')],
        hospital_ids={'H1': 'h1'},
        doctor_ids={'dr-a': 'd1', 'dr-a-alias': 'd1'},
    )
    assert outcome.created == 1
    assert memory_store.ops('insert', LINKS) == [('insert', LINKS, 1)]


def test_existing_links_are_skipped_before_insert(memory_store):
    memory_store.seed(LINKS, doctor_id='d1', hospital_id='h1')
    outcome = ReconcilingWriter(memory_store).write_links(
        [('dr-a', 'H1'), ('dr-a', 'H2')],
        hospital_ids={'H1': 'h1', 'H2': 'h2'}, doctor_ids={'dr-a': 'd1'},
    )
    assert outcome.already_present == 1
    assert outcome.created == 1
    assert memory_store.ops('insert', LINKS) == [('insert', LINKS, 1)]


def test_duplicate_link_batch_is_not_retried(memory_store):
    memory_store.seed(LINKS, doctor_id='d1', hospital_id='h1')
    memory_store.fail('select', LINKS, StoreError('timeout'))
    outcome = ReconcilingWriter(memory_store).write_links(
        [('dr-a', 'H1')], hospital_ids={'H1': 'h1'}, doctor_ids={'dr-a': 'd1'},
    )
    assert outcome.already_present == 1
    assert outcome.created == 0
    assert len(memory_store.ops('insert', LINKS)) == 1


def test_failed_link_batch_retries_each_row(memory_store):
    memory_store.fail('insert', LINKS, StoreError('server error', status=500), None, StoreError('fk violation'))
    outcome = ReconcilingWriter(memory_store).write_links(
        [('dr-a', 'H1'), ('dr-a', 'H2'), ('dr-b', 'H1')],
        hospital_ids={'H1': 'h1', 'H2': 'h2'},
        doctor_ids={'dr-a': 'd1', 'dr-b': 'd2'},
    )
    assert [c[2] for c in memory_store.ops('insert', LINKS)] == [3, 1, 1, 1]
    assert outcome.created == 2
    assert outcome.failed == 1


def test_row_retry_counts_duplicates_as_present(memory_store):
    memory_store.seed(LINKS, doctor_id='d1', hospital_id='h1')
    memory_store.fail('select', LINKS, StoreError('timeout'))
    memory_store.fail('insert', LINKS, StoreError('server error', status=500))
    outcome = ReconcilingWriter(memory_store).write_links(
        [('dr-a', 'H1'), ('dr-a', 'H2')],
        hospital_ids={'H1': 'h1', 'H2': 'h2'},
        doctor_ids={'dr-a': 'd1'},
    )
    assert outcome.already_present == 1
    assert outcome.created == 1
    assert outcome.failed == 0


def test_links_batched_by_fifty(memory_store):
    links = [('dr-%d' % i, 'H1') for i in range(51)]
    outcome = ReconcilingWriter(memory_store).write_links(
        links, hospital_ids={'H1': 'h1'}, doctor_ids={p: 'd%s' % p for p, _ in links},
    )
    assert [c[2] for c in memory_store.ops('insert', LINKS)] == [50, 1]
    assert outcome.created == 51


# -- full runs ----------------------------------------------------------------

RECORDS = [
    RawRecord(hospital_name='Lenmed Ethekwini', permalink='dr-smith', title='Dr Smith', disciplines='Cardiology'),
    RawRecord(hospital_name='Lenmed Zamokuhle', permalink='dr-smith', title='Dr Smith', disciplines='Neurology'),
    RawRecord(hospital_name='Lenmed Zamokuhle', permalink='dr-jones', title='Dr Jones'),
    RawRecord(hospital_name='', permalink='dr-khumalo', title='Dr Khumalo'),
    RawRecord(hospital_name='Lenmed Shifa', permalink=''),
]


def test_run_memory_store_rerun_is_idempotent(memory_store):
    data = normalize(RECORDS)
    first = ReconcilingWriter(memory_store).run(data)
    counts = {t: memory_store.count(t) for t in (HOSPITALS, DOCTORS, LINKS)}
    second = ReconcilingWriter(memory_store).run(data)
    assert {t: memory_store.count(t) for t in (HOSPITALS, DOCTORS, LINKS)} == counts
    assert counts == {HOSPITALS: 3, DOCTORS: 3, LINKS: 3}
    assert first.links.created == 3
    assert second.links.created == 0
    assert second.links.already_present == 3
    assert second.hospitals.ids == first.hospitals.ids
    assert second.doctors.ids == first.doctors.ids


@pytest.mark.django_db
def test_run_against_database():
    report = ReconcilingWriter(OrmStore()).run(normalize(RECORDS))
    assert report.hospitals.ready == 3
    assert report.doctors.ready == 3
    assert report.links.created == 3
    smith = Doctor.objects.get(permalink='dr-smith')
    assert smith.disciplines == 'Cardiology'
    assert sorted(smith.hospitals.values_list('name', flat=True)) == ['Lenmed Ethekwini', 'Lenmed Zamokuhle']
    assert Doctor.objects.get(permalink='dr-khumalo').hospitals.count() == 0


@pytest.mark.django_db
def test_database_rerun_creates_nothing_new():
    data = normalize(RECORDS)
    ReconcilingWriter(OrmStore()).run(data)
    before = (Hospital.objects.count(), Doctor.objects.count(), DoctorHospital.objects.count())
    report = ReconcilingWriter(OrmStore()).run(data)
    assert (Hospital.objects.count(), Doctor.objects.count(), DoctorHospital.objects.count()) == before
    assert report.hospitals.missing == []
    assert report.doctors.missing == []
    assert report.links.already_present == 3


@pytest.mark.django_db
def test_database_partial_overlap_resolves_every_hospital():
    Hospital.objects.create(name='Lenmed Ethekwini')
    Doctor.objects.create(permalink='dr-jones', full_name='Dr Jones (edited)')
    report = ReconcilingWriter(OrmStore()).run(normalize(RECORDS))
    referenced = {r.hospital_name for r in RECORDS if r.hospital_name}
    assert report.hospitals.stage_names() == [Stage.BULK_INSERT, Stage.REFETCH, Stage.REMAINDER_INSERT]
    assert report.hospitals.missing == []
    assert set(Hospital.objects.values_list('name', flat=True)) == referenced
    assert Doctor.objects.get(permalink='dr-jones').full_name == 'Dr Jones (edited)'
    assert set(report.doctors.ids) == {'dr-smith', 'dr-jones', 'dr-khumalo'}
    for link in DoctorHospital.objects.select_related('doctor', 'hospital'):
        assert link.hospital.name in referenced
    assert report.links.created == 3
    assert report.links.orphaned == 0
