"""
Reconciling writer: persists a normalized import into a store that may
already hold some or all of it.

Each entity table goes down a ladder of fallbacks, one
:class:`ReconcilePolicy` method per rung:

* ``bulk_insert``     insert everything (or one batch) in one call
* ``refetch``         read the whole table back to recover ids
* ``remainder_insert`` insert only the keys the refetch did not find
* ``row_insert``      insert a single row
* ``row_lookup``      find a single row by its natural key
* ``safety_refetch``  one more full read when ids are still missing

Links are checked against the pairs already stored before they are
batched, so a re-run only sends links that are actually new.

Every rung returns a :class:`StageResult` instead of raising, so a
conflict or a failed batch only narrows the granularity of the next
attempt and never stops the run.  Hospitals are written first, then
doctors, then the links that need both id maps.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from directory.exceptions import StoreError
from directory.services.normalize import DoctorEntity, LinkKey, NormalizedImport
from directory.services.store import Store

logger = logging.getLogger(__name__)

HOSPITALS = 'hospitals'
DOCTORS = 'doctors'
LINKS = 'doctor_hospitals'

DEFAULT_BATCH_SIZE = 50


class Stage:
    BULK_INSERT = 'bulk_insert'
    REFETCH = 'refetch'
    SAFETY_REFETCH = 'safety_refetch'
    ROW_INSERT = 'row_insert'
    ROW_LOOKUP = 'row_lookup'
    REMAINDER_INSERT = 'remainder_insert'


@dataclass
class StageResult:
    stage: str
    ok: bool
    reason: str = ''
    duplicate: bool = False
    ids: Dict[Any, Any] = field(default_factory=dict)  # natural key -> id
    rows: int = 0

    @classmethod
    def failed(cls, stage: str, exc: StoreError) -> 'StageResult':
        return cls(stage, False, reason=str(exc), duplicate=exc.is_duplicate)


Key = Union[str, Tuple[str, ...]]


def _columns(key: Optional[Key]) -> Tuple[str, ...]:
    if key is None:
        return ('id',)
    return ('id',) + ((key,) if isinstance(key, str) else tuple(key))


def _id_map(rows: Iterable[dict], key: Optional[Key]) -> Dict[Any, Any]:
    if key is None:
        return {}
    if isinstance(key, str):
        return {row[key]: row['id'] for row in rows if row.get(key)}
    return {tuple(row[k] for k in key): row['id'] for row in rows}


class ReconcilePolicy:
    """One method per fallback stage; none of them raise StoreError."""

    def __init__(self, store: Store):
        self.store = store

    def bulk_insert(self, table: str, rows: List[dict], key: Optional[str] = None,
                    stage: str = Stage.BULK_INSERT) -> StageResult:
        try:
            inserted = self.store.insert(table, rows, returning=_columns(key))
        except StoreError as exc:
            return StageResult.failed(stage, exc)
        return StageResult(stage, True, ids=_id_map(inserted, key), rows=len(inserted))

    def row_insert(self, table: str, row: dict, key: Optional[str] = None) -> StageResult:
        try:
            inserted = self.store.insert(table, [row], returning=_columns(key))
        except StoreError as exc:
            return StageResult.failed(Stage.ROW_INSERT, exc)
        return StageResult(Stage.ROW_INSERT, True, ids=_id_map(inserted, key), rows=len(inserted))

    def row_lookup(self, table: str, key: str, value: Any) -> StageResult:
        try:
            found = self.store.select(table, _columns(key), **{key: value})
        except StoreError as exc:
            return StageResult.failed(Stage.ROW_LOOKUP, exc)
        if not found:
            return StageResult(Stage.ROW_LOOKUP, False, reason=f'no {table} row with {key}={value!r}')
        return StageResult(Stage.ROW_LOOKUP, True, ids=_id_map(found[:1], key), rows=1)

    def refetch(self, table: str, key: Key, stage: str = Stage.REFETCH) -> StageResult:
        try:
            rows = self.store.select(table, _columns(key))
        except StoreError as exc:
            return StageResult.failed(stage, exc)
        return StageResult(stage, True, ids=_id_map(rows, key), rows=len(rows))


@dataclass
class EntityOutcome:
    """Ids resolved for one entity table and the stages it took."""
    keys: List[Any] = field(default_factory=list)
    ids: Dict[Any, Any] = field(default_factory=dict)
    stages: List[StageResult] = field(default_factory=list)

    def record(self, result: StageResult) -> StageResult:
        self.stages.append(result)
        return result

    @property
    def missing(self) -> List[Any]:
        return [k for k in self.keys if k not in self.ids]

    @property
    def ready(self) -> int:
        return len(self.keys) - len(self.missing)

    def stage_names(self) -> List[str]:
        return [s.stage for s in self.stages]


@dataclass
class LinkOutcome:
    pending: int = 0
    created: int = 0
    already_present: int = 0
    orphaned: int = 0
    failed: int = 0
    stages: List[StageResult] = field(default_factory=list)

    def record(self, result: StageResult) -> StageResult:
        self.stages.append(result)
        return result


@dataclass
class ImportReport:
    hospitals: EntityOutcome
    doctors: EntityOutcome
    links: LinkOutcome


ProgressCallback = Callable[[str, int, int], None]


class ReconcilingWriter:
    def __init__(self, store: Store, *, batch_size: int = DEFAULT_BATCH_SIZE,
                 policy: Optional[ReconcilePolicy] = None,
                 progress: Optional[ProgressCallback] = None):
        self.policy = policy or ReconcilePolicy(store)
        self.batch_size = batch_size
        self.progress = progress or (lambda table, done, total: None)

    def run(self, data: NormalizedImport) -> ImportReport:
        hospitals = self.write_hospitals(data.hospitals)
        doctors = self.write_doctors(data.doctors)
        links = self.write_links(data.links, hospitals.ids, doctors.ids)
        return ImportReport(hospitals=hospitals, doctors=doctors, links=links)

    def write_hospitals(self, names: Sequence[str]) -> EntityOutcome:
        outcome = EntityOutcome(keys=list(names))
        if names:
            result = outcome.record(
                self.policy.bulk_insert(HOSPITALS, [{'name': name} for name in names], key='name')
            )
            if result.ok:
                outcome.ids.update(result.ids)
            else:
                logger.info('hospital insert rejected (%s); fetching existing hospitals', result.reason)
                fetched = outcome.record(self.policy.refetch(HOSPITALS, 'name'))
                outcome.ids.update(fetched.ids)
                # the rejected insert was all-or-nothing, so new names are still unwritten
                if fetched.ok and outcome.missing:
                    remainder = outcome.record(self.policy.bulk_insert(
                        HOSPITALS, [{'name': name} for name in outcome.missing], key='name',
                        stage=Stage.REMAINDER_INSERT,
                    ))
                    outcome.ids.update(remainder.ids)
        self._safety_refetch(outcome, HOSPITALS, 'name')
        self.progress(HOSPITALS, len(names), len(names))
        return outcome

    def write_doctors(self, doctors: Dict[str, DoctorEntity]) -> EntityOutcome:
        items = list(doctors.items())
        outcome = EntityOutcome(keys=[permalink for permalink, _ in items])
        total = len(items)
        for start in range(0, total, self.batch_size):
            batch = items[start:start + self.batch_size]
            result = outcome.record(
                self.policy.bulk_insert(DOCTORS, [doctor.as_row() for _, doctor in batch], key='permalink')
            )
            if result.ok:
                outcome.ids.update(result.ids)
            else:
                logger.info('doctor batch %d-%d rejected (%s); inserting row by row',
                            start + 1, start + len(batch), result.reason)
                for permalink, doctor in batch:
                    self._write_doctor(outcome, permalink, doctor)
            self.progress(DOCTORS, min(start + self.batch_size, total), total)
        self._safety_refetch(outcome, DOCTORS, 'permalink')
        return outcome

    def _write_doctor(self, outcome: EntityOutcome, permalink: str, doctor: DoctorEntity) -> None:
        single = outcome.record(self.policy.row_insert(DOCTORS, doctor.as_row(), key='permalink'))
        if single.ok:
            outcome.ids.update(single.ids)
            return
        found = outcome.record(self.policy.row_lookup(DOCTORS, 'permalink', permalink))
        if found.ok:
            outcome.ids.update(found.ids)
        else:
            logger.warning('doctor %s not written (%s) and not found (%s)',
                           permalink, single.reason, found.reason)

    def _safety_refetch(self, outcome: EntityOutcome, table: str, key: str) -> None:
        if not outcome.missing:
            return
        result = outcome.record(self.policy.refetch(table, key, stage=Stage.SAFETY_REFETCH))
        outcome.ids.update(result.ids)
        for missing in outcome.missing:
            logger.warning('%s %r has no id after refetch', table, missing)

    def resolve_links(self, links: Iterable[LinkKey], hospital_ids: Dict[str, Any],
                      doctor_ids: Dict[str, Any], outcome: LinkOutcome) -> List[dict]:
        rows: List[dict] = []
        seen = set()
        for permalink, hospital_name in links:
            doctor_id = doctor_ids.get(permalink)
            hospital_id = hospital_ids.get(hospital_name)
            if not doctor_id or not hospital_id:
                outcome.orphaned += 1
                continue
            key: Tuple[Any, Any] = (doctor_id, hospital_id)
            if key in seen:
                continue
            seen.add(key)
            rows.append({'doctor_id': doctor_id, 'hospital_id': hospital_id})
        return rows

    def write_links(self, links: Sequence[LinkKey], hospital_ids: Dict[str, Any],
                    doctor_ids: Dict[str, Any]) -> LinkOutcome:
        outcome = LinkOutcome(pending=len(links))
        rows = self.resolve_links(links, hospital_ids, doctor_ids, outcome)
        if rows:
            rows = self._drop_existing_links(rows, outcome)
        total = len(rows)
        for start in range(0, total, self.batch_size):
            batch = rows[start:start + self.batch_size]
            result = outcome.record(self.policy.bulk_insert(LINKS, batch))
            if result.ok:
                outcome.created += result.rows
            elif result.duplicate:
                # written concurrently since the existing links were read; not retried
                outcome.already_present += len(batch)
            else:
                logger.info('link batch %d-%d rejected (%s); inserting row by row',
                            start + 1, start + len(batch), result.reason)
                for row in batch:
                    single = outcome.record(self.policy.row_insert(LINKS, row))
                    if single.ok:
                        outcome.created += 1
                    elif single.duplicate:
                        outcome.already_present += 1
                    else:
                        outcome.failed += 1
                        logger.warning('link doctor=%s hospital=%s dropped: %s',
                                       row['doctor_id'], row['hospital_id'], single.reason)
            self.progress(LINKS, min(start + self.batch_size, total), total)
        return outcome

    def _drop_existing_links(self, rows: List[dict], outcome: LinkOutcome) -> List[dict]:
        existing = outcome.record(self.policy.refetch(LINKS, ('doctor_id', 'hospital_id')))
        if not existing.ok:
            logger.info('could not read existing links (%s); inserting all', existing.reason)
            return rows
        fresh = [r for r in rows if (r['doctor_id'], r['hospital_id']) not in existing.ids]
        outcome.already_present += len(rows) - len(fresh)
        return fresh
