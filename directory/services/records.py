"""
Reading the website's flat CSV export into typed rows.

Every cell is trimmed, blank lines are skipped and source order is kept:
the normalizer's "first occurrence wins" rule depends on it.
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from directory.exceptions import CsvParseError

HOSPITAL_NAME = 'Hospital Name'
PERMALINK = 'Permalink'
TITLE = 'Title'
FULL_NAME = 'Dr Full Name'
DISCIPLINES = 'Doctors Disciplines'
PHONE1 = 'wpcf-doctor-telephone'
PHONE2 = 'wpcf-doctor-telephone-2'
PHONE3 = 'wpcf-doctor-telephone-3'
EMAIL = 'wpcf-contact-email'
BIO_LINK = 'wpcf-display-bio-link'
STATUS = 'Status'

COLUMNS = (
    HOSPITAL_NAME, PERMALINK, TITLE, FULL_NAME, DISCIPLINES,
    PHONE1, PHONE2, PHONE3, EMAIL, BIO_LINK, STATUS,
)
# Without both natural keys nothing can be imported.
REQUIRED_COLUMNS = (HOSPITAL_NAME, PERMALINK)

# Truth table for ``wpcf-display-bio-link``.  The export writes the flag
# as a float ("1.0") or an int ("1"); every other value, including
# "true", "yes", "0", "0.0" and the empty string, means no bio link.
BIO_LINK_TRUE_TOKENS = frozenset({'1.0', '1'})


def parse_bio_link(value: Optional[str]) -> bool:
    return value in BIO_LINK_TRUE_TOKENS


@dataclass(frozen=True)
class RawRecord:
    """One row of the export.  Missing cells are empty strings."""
    hospital_name: str = ''
    permalink: str = ''
    title: str = ''
    full_name: str = ''
    disciplines: str = ''
    phone1: str = ''
    phone2: str = ''
    phone3: str = ''
    email: str = ''
    bio_link: bool = False
    status: str = ''

    @classmethod
    def from_row(cls, row: dict) -> 'RawRecord':
        def get(column):
            return row.get(column) or ''

        return cls(
            hospital_name=get(HOSPITAL_NAME),
            permalink=get(PERMALINK),
            title=get(TITLE),
            full_name=get(FULL_NAME),
            disciplines=get(DISCIPLINES),
            phone1=get(PHONE1),
            phone2=get(PHONE2),
            phone3=get(PHONE3),
            email=get(EMAIL),
            bio_link=parse_bio_link(row.get(BIO_LINK)),
            status=get(STATUS),
        )


def _check_header(header: List[str]) -> None:
    if not header or not any(header):
        raise CsvParseError('missing header row', line=1)
    if '' in header:
        raise CsvParseError(f'empty column name at position {header.index("") + 1}', line=1)
    seen = set()
    for name in header:
        if name in seen:
            raise CsvParseError(f'duplicate column {name!r}', line=1)
        seen.add(name)
    missing = [c for c in REQUIRED_COLUMNS if c not in seen]
    if missing:
        raise CsvParseError(f"missing required column(s): {', '.join(missing)}", line=1)


def parse_records(lines: Iterable[str]) -> List[RawRecord]:
    """Parse CSV text (an iterable of lines) into ordered records.

    Raises :class:`CsvParseError` when the header is absent or malformed
    or when a row has a different number of fields than the header.  No
    partial result is returned in that case.
    """
    reader = csv.reader(lines)
    try:
        header: Optional[List[str]] = None
        records: List[RawRecord] = []
        for row in reader:
            cells = [cell.strip() for cell in row]
            if not any(cells):
                continue
            if header is None:
                header = cells
                _check_header(header)
                continue
            if len(cells) != len(header):
                raise CsvParseError(
                    f'expected {len(header)} fields, found {len(cells)}', line=reader.line_num
                )
            records.append(RawRecord.from_row(dict(zip(header, cells))))
    except csv.Error as exc:
        raise CsvParseError(str(exc), line=reader.line_num) from exc
    if header is None:
        raise CsvParseError('missing header row')
    return records


def parse_text(text: str) -> List[RawRecord]:
    return parse_records(io.StringIO(text, newline=''))


def read_records(path: Union[str, Path]) -> List[RawRecord]:
    # utf-8-sig drops the BOM spreadsheet exports like to add
    with open(path, newline='', encoding='utf-8-sig') as fh:
        try:
            return parse_records(fh)
        except UnicodeDecodeError as exc:
            raise CsvParseError(f'not valid UTF-8: {exc}') from exc
