"""
Offline alternative to the live import: render a normalized import as a
SQL script to paste into the Supabase SQL editor.

Statement order carries the correctness here.  Hospitals and doctors are
inserted first, each with ``ON CONFLICT DO NOTHING``, and the links are
then resolved by joining a literal VALUES table against both entity
tables on their natural keys, so links whose doctor or hospital never
made it in are simply not produced.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Optional

from directory.services.normalize import DoctorEntity, LinkKey, NormalizedImport

NULL = 'NULL'

DOCTOR_COLUMNS = (
    'title', 'full_name', 'disciplines', 'phone1', 'phone2', 'phone3',
    'email', 'bio_link', 'permalink', 'status',
)

COUNT_QUERIES = """-- Show counts
SELECT 'Hospitals' as table_name, COUNT(*) as count FROM hospitals
UNION ALL
SELECT 'Doctors', COUNT(*) FROM doctors
UNION ALL
SELECT 'Relationships', COUNT(*) FROM doctor_hospitals;
"""


def quote(value: Optional[str]) -> str:
    """SQL string literal with embedded quotes doubled; empty or None is NULL."""
    if not value:
        return NULL
    return "'" + value.replace("'", "''") + "'"


def literal(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return quote(value)


def _values(rows: Iterable[str]) -> str:
    return ',\n'.join(rows)


def hospitals_sql(names: List[str]) -> str:
    if not names:
        return '-- Insert Hospitals\n-- (no hospitals in source)\n'
    return (
        '-- Insert Hospitals\n'
        'INSERT INTO hospitals (name) VALUES\n'
        f'{_values(f"({quote(name)})" for name in names)}\n'
        'ON CONFLICT DO NOTHING;\n'
    )


def doctors_sql(doctors: Iterable[DoctorEntity]) -> str:
    rows = [
        '(' + ', '.join(literal(getattr(doctor, column)) for column in DOCTOR_COLUMNS) + ')'
        for doctor in doctors
    ]
    if not rows:
        return '-- Insert Doctors\n-- (no doctors in source)\n'
    return (
        '-- Insert Doctors\n'
        f'INSERT INTO doctors ({", ".join(DOCTOR_COLUMNS)}) VALUES\n'
        f'{_values(rows)}\n'
        'ON CONFLICT DO NOTHING;\n'
    )


def links_sql(links: List[LinkKey]) -> str:
    if links:
        source = (
            'FROM (VALUES\n'
            f'{_values(f"({quote(permalink)}, {quote(name)})" for permalink, name in links)}\n'
            ') AS v(permalink, hospital_name)\n'
        )
    else:
        # VALUES needs at least one row; an empty typed select keeps the statement valid
        source = (
            'FROM (SELECT NULL::text AS permalink, NULL::text AS hospital_name WHERE false) AS v\n'
        )
    return (
        '-- Insert Doctor-Hospital Relationships\n'
        'INSERT INTO doctor_hospitals (doctor_id, hospital_id)\n'
        'SELECT d.id, h.id\n'
        f'{source}'
        'JOIN doctors d ON d.permalink = v.permalink\n'
        'JOIN hospitals h ON h.name = v.hospital_name\n'
        'ON CONFLICT DO NOTHING;\n'
    )


def render_import_sql(data: NormalizedImport, source_name: str = 'flume_expanded.csv') -> str:
    header = (
        '-- Lenmed Data Import\n'
        f'-- Generated from {source_name}\n'
        '-- Run this in Supabase SQL Editor\n'
    )
    return '\n'.join([
        header,
        hospitals_sql(data.hospitals),
        doctors_sql(data.doctors.values()),
        links_sql(data.links),
        COUNT_QUERIES,
    ])
