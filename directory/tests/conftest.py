import csv
import io
import itertools

import pytest

from directory.exceptions import StoreError
from directory.services.records import COLUMNS
from directory.services.store import Store

UNIQUE = {
    'hospitals': ('name',),
    'doctors': ('permalink',),
    'doctor_hospitals': ('doctor_id', 'hospital_id'),
}


def duplicate_error(table):
    return StoreError(f'duplicate key value violates unique constraint "{table}_key"', code='23505', status=409)


class MemoryStore(Store):
    """In-memory tables with the real uniqueness rules and scripted failures.

    ``fail(op, table, *errors)`` queues errors raised by the next calls
    of ``op`` on ``table``; queued ``None`` entries let a call through.
    """

    def __init__(self):
        self.tables = {table: [] for table in UNIQUE}
        self.failures = {}
        self.calls = []
        self._ids = itertools.count(1)

    def fail(self, op, table, *errors):
        self.failures.setdefault((op, table), []).extend(errors)

    def _maybe_fail(self, op, table):
        queued = self.failures.get((op, table))
        if queued:
            error = queued.pop(0)
            if error is not None:
                raise error

    def _key(self, table, row):
        return tuple(row.get(c) for c in UNIQUE[table])

    def seed(self, table, **row):
        row = dict(row, id=row.get('id') or f'{table}-{next(self._ids)}')
        self.tables[table].append(row)
        return row

    def insert(self, table, rows, returning=('id',)):
        self.calls.append(('insert', table, len(rows)))
        self._maybe_fail('insert', table)
        taken = {self._key(table, r) for r in self.tables[table]}
        for row in rows:
            key = self._key(table, row)
            if key in taken:
                raise duplicate_error(table)
            taken.add(key)
        created = [dict(row, id=f'{table}-{next(self._ids)}') for row in rows]
        self.tables[table].extend(created)
        return [{c: r.get(c) for c in returning} for r in created]

    def select(self, table, columns, *, order=None, **filters):
        self.calls.append(('select', table, tuple(sorted(filters))))
        self._maybe_fail('select', table)
        rows = [r for r in self.tables[table] if all(r.get(k) == v for k, v in filters.items())]
        if order:
            rows = sorted(rows, key=lambda r: r.get(order) or '')
        return [{c: r.get(c) for c in columns} for r in rows]

    def update_all(self, table, values):
        for row in self.tables[table]:
            row.update(values)

    def delete_in(self, table, column, values):
        values = set(values)
        self.tables[table] = [r for r in self.tables[table] if r.get(column) not in values]

    def count(self, table):
        return len(self.tables[table])

    def ops(self, op, table):
        return [c for c in self.calls if c[0] == op and c[1] == table]


@pytest.fixture
def memory_store():
    return MemoryStore()


def csv_text(*rows, columns=COLUMNS):
    """CSV export text with the full header; rows are dicts keyed by column."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(columns), lineterminator='\n')
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()


def row(hospital='', permalink='', **extra):
    data = {'Hospital Name': hospital, 'Permalink': permalink}
    data.update(extra)
    return data
