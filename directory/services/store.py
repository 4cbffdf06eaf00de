"""
Stores the importer and the maintenance commands write to.

:class:`SupabaseStore` talks to the Supabase REST API (PostgREST) with
``requests``; :class:`OrmStore` reaches the same three tables through
the Django models.  Both raise :class:`StoreError` for every failed
round-trip so callers can decide how to degrade.
"""
from __future__ import annotations

import uuid
from typing import Any, Iterable, List, Optional, Sequence

import requests
from django.conf import settings
from django.db import DatabaseError, transaction

from directory.exceptions import ConfigurationError, StoreError
from directory.models import Doctor, DoctorHospital, Hospital


class Store:
    """Minimal table-level API shared by the stores."""

    def insert(self, table: str, rows: List[dict], returning: Sequence[str] = ('id',)) -> List[dict]:
        """Insert ``rows`` as one unit and return the ``returning`` columns of each."""
        raise NotImplementedError

    def select(self, table: str, columns: Sequence[str], *, order: Optional[str] = None,
               **filters: Any) -> List[dict]:
        """Return all rows matching the equality ``filters``, ascending by ``order``."""
        raise NotImplementedError

    def update_all(self, table: str, values: dict) -> None:
        raise NotImplementedError

    def delete_in(self, table: str, column: str, values: Iterable[Any]) -> None:
        raise NotImplementedError

    def count(self, table: str) -> int:
        raise NotImplementedError


class SupabaseStore(Store):
    page_size = 1000
    delete_chunk = 100

    def __init__(self, url: str, key: str, *, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        if not url:
            raise ConfigurationError('SUPABASE_URL')
        if not key:
            raise ConfigurationError('SUPABASE_SERVICE_KEY or SUPABASE_KEY')
        self.rest_url = url.rstrip('/') + '/rest/v1'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': key,
            'Authorization': f'Bearer {key}',
        })

    @classmethod
    def from_settings(cls) -> 'SupabaseStore':
        return cls(settings.SUPABASE_URL, settings.SUPABASE_KEY, timeout=settings.SUPABASE_TIMEOUT)

    def _request(self, method: str, table: str, *, params=None, json=None, headers=None) -> requests.Response:
        try:
            r = self.session.request(method, f'{self.rest_url}/{table}', params=params, json=json,
                                     headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise StoreError(f'{method} {table} failed: {exc}') from exc
        if r.status_code >= 400:
            try:
                data = r.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            message = data.get('message') or r.text or r.reason or f'HTTP {r.status_code}'
            raise StoreError(message, code=data.get('code'), status=r.status_code)
        return r

    def _json(self, r: requests.Response, table: str) -> Any:
        try:
            return r.json()
        except ValueError as exc:
            raise StoreError(f'non-JSON response from {table}', status=r.status_code) from exc

    def insert(self, table, rows, returning=('id',)):
        r = self._request('POST', table, params={'select': ','.join(returning)}, json=rows,
                          headers={'Prefer': 'return=representation'})
        return self._json(r, table)

    def select(self, table, columns, *, order=None, **filters):
        params = {'select': ','.join(columns)}
        for column, value in filters.items():
            params[column] = f'eq.{value}'
        if order:
            params['order'] = f'{order}.asc'
        # PostgREST caps every response, so page through with Range headers.
        rows: List[dict] = []
        start = 0
        while True:
            end = start + self.page_size - 1
            r = self._request('GET', table, params=params,
                              headers={'Range-Unit': 'items', 'Range': f'{start}-{end}'})
            page = self._json(r, table)
            if not isinstance(page, list):
                raise StoreError(f'unexpected response from {table}: {page!r}', status=r.status_code)
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            start += self.page_size

    def update_all(self, table, values):
        # Supabase refuses filterless updates; match every row instead.
        self._request('PATCH', table, params={'id': 'not.is.null'}, json=values,
                      headers={'Prefer': 'return=minimal'})

    def delete_in(self, table, column, values):
        values = list(values)
        for start in range(0, len(values), self.delete_chunk):
            chunk = values[start:start + self.delete_chunk]
            quoted = ','.join(f'"{v}"' for v in chunk)
            self._request('DELETE', table, params={column: f'in.({quoted})'},
                          headers={'Prefer': 'return=minimal'})

    def count(self, table):
        r = self._request('GET', table, params={'select': 'id'},
                          headers={'Prefer': 'count=exact', 'Range-Unit': 'items', 'Range': '0-0'})
        # Content-Range looks like "0-0/123" ("*/0" for an empty table)
        total = r.headers.get('Content-Range', '').rsplit('/', 1)[-1]
        try:
            return int(total)
        except ValueError:
            raise StoreError(f'unexpected Content-Range {total!r} for {table}')


def _plain(value: Any) -> Any:
    return str(value) if isinstance(value, uuid.UUID) else value


class OrmStore(Store):
    """The same tables in the project's own database."""

    MODELS = {
        'hospitals': Hospital,
        'doctors': Doctor,
        'doctor_hospitals': DoctorHospital,
    }

    def __init__(self, using: str = 'default'):
        self.using = using

    def _manager(self, table: str):
        try:
            return self.MODELS[table].objects.db_manager(self.using)
        except KeyError:
            raise StoreError(f'unknown table {table!r}')

    def insert(self, table, rows, returning=('id',)):
        manager = self._manager(table)
        objs = [manager.model(**row) for row in rows]
        try:
            with transaction.atomic(using=self.using):
                manager.bulk_create(objs)
        except DatabaseError as exc:
            raise StoreError(str(exc)) from exc
        return [{c: _plain(getattr(obj, c)) for c in returning} for obj in objs]

    def select(self, table, columns, *, order=None, **filters):
        qs = self._manager(table).filter(**filters)
        if order:
            qs = qs.order_by(order)
        try:
            return [{k: _plain(v) for k, v in row.items()} for row in qs.values(*columns)]
        except DatabaseError as exc:
            raise StoreError(str(exc)) from exc

    def update_all(self, table, values):
        try:
            self._manager(table).all().update(**values)
        except DatabaseError as exc:
            raise StoreError(str(exc)) from exc

    def delete_in(self, table, column, values):
        try:
            self._manager(table).filter(**{f'{column}__in': list(values)}).delete()
        except DatabaseError as exc:
            raise StoreError(str(exc)) from exc

    def count(self, table):
        try:
            return self._manager(table).count()
        except DatabaseError as exc:
            raise StoreError(str(exc)) from exc
