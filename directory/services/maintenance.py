from dataclasses import dataclass
from typing import Dict, List, Optional

from directory.services.store import Store

DOCTORS = 'doctors'


@dataclass
class DuplicateGroup:
    name: str
    doctors: List[dict]

    @property
    def count(self) -> int:
        return len(self.doctors)


def normalized_name(full_name: Optional[str]) -> str:
    return (full_name or '').strip().lower()


def reset_status(store: Store) -> None:
    store.update_all(DOCTORS, {'status': None})


def find_duplicates(store: Store) -> List[DuplicateGroup]:
    """Doctors sharing a full name, ignoring case and surrounding spaces."""
    groups: Dict[str, List[dict]] = {}
    for doctor in store.select(DOCTORS, ('id', 'full_name', 'title', 'email'), order='full_name'):
        groups.setdefault(normalized_name(doctor.get('full_name')), []).append(doctor)
    return [DuplicateGroup(name, docs) for name, docs in groups.items() if len(docs) > 1]


def duplicate_ids(store: Store) -> List[str]:
    """Ids of every doctor but the earliest created one per normalized name."""
    seen = set()
    ids = []
    for doctor in store.select(DOCTORS, ('id', 'full_name', 'created_at'), order='created_at'):
        key = normalized_name(doctor.get('full_name'))
        if key in seen:
            ids.append(doctor['id'])
        else:
            seen.add(key)
    return ids


def remove_duplicates(store: Store) -> int:
    ids = duplicate_ids(store)
    if ids:
        store.delete_in(DOCTORS, 'id', ids)
    return len(ids)


def doctor_count(store: Store) -> int:
    return store.count(DOCTORS)
