"""
Turning flat export rows into hospitals, doctors and their links.

All functions here are pure: they only read the record sequence and
return new containers, so the same input order always gives the same
result.  Natural keys are the hospital name and the doctor permalink.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from directory.services.records import RawRecord

DEFAULT_STATUS = 'publish'

LinkKey = Tuple[str, str]  # (permalink, hospital name)


@dataclass(frozen=True)
class DoctorEntity:
    title: str
    full_name: str
    disciplines: str
    phone1: str
    phone2: str
    phone3: str
    email: str
    bio_link: bool
    permalink: str
    status: str

    @classmethod
    def from_record(cls, record: RawRecord) -> 'DoctorEntity':
        return cls(
            title=record.title,
            full_name=record.full_name or record.title,
            disciplines=record.disciplines,
            phone1=record.phone1,
            phone2=record.phone2,
            phone3=record.phone3,
            email=record.email,
            bio_link=record.bio_link,
            permalink=record.permalink,
            status=record.status or DEFAULT_STATUS,
        )

    def as_row(self) -> dict:
        return asdict(self)


@dataclass
class NormalizedImport:
    """Everything one import run needs, built from a single record list."""
    hospitals: List[str] = field(default_factory=list)
    doctors: Dict[str, DoctorEntity] = field(default_factory=dict)
    links: List[LinkKey] = field(default_factory=list)
    record_count: int = 0


def extract_hospitals(records: Iterable[RawRecord]) -> List[str]:
    """Unique non-empty hospital names in first-appearance order."""
    seen = {}
    for record in records:
        if record.hospital_name and record.hospital_name not in seen:
            seen[record.hospital_name] = None
    return list(seen)


def extract_doctors(records: Iterable[RawRecord]) -> Dict[str, DoctorEntity]:
    """Map each permalink to the doctor built from its first row.

    Later rows with the same permalink are ignored here; they still
    count for :func:`extract_links`.
    """
    doctors: Dict[str, DoctorEntity] = {}
    for record in records:
        if not record.permalink or record.permalink in doctors:
            continue
        doctors[record.permalink] = DoctorEntity.from_record(record)
    return doctors


def extract_links(records: Iterable[RawRecord]) -> List[LinkKey]:
    """Unique (permalink, hospital name) pairs in first-appearance order."""
    seen = set()
    links: List[LinkKey] = []
    for record in records:
        if not record.permalink or not record.hospital_name:
            continue
        key = (record.permalink, record.hospital_name)
        if key not in seen:
            seen.add(key)
            links.append(key)
    return links


def normalize(records: Sequence[RawRecord]) -> NormalizedImport:
    return NormalizedImport(
        hospitals=extract_hospitals(records),
        doctors=extract_doctors(records),
        links=extract_links(records),
        record_count=len(records),
    )
