"""
Management command writing the CSV export out as a SQL script.

Used when the live import cannot reach Supabase: the generated file is
pasted into the Supabase SQL editor instead.
"""
from pathlib import Path

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from directory.exceptions import CsvParseError
from directory.services.normalize import normalize
from directory.services.records import read_records
from directory.services.sql_emitter import render_import_sql


class Command(BaseCommand):
    help = "Generate scripts/import-data.sql from the CSV export."

    def handle(self, *args, **options):
        source = Path(settings.IMPORT_CSV_PATH)
        target = Path(settings.IMPORT_SQL_PATH)

        self.stdout.write('Reading CSV file...')
        try:
            records = read_records(source)
        except FileNotFoundError:
            raise CommandError(f'CSV file not found: {source}')
        except CsvParseError as exc:
            raise CommandError(f'Could not parse {source}: {exc}')

        data = normalize(records)
        self.stdout.write(f'Found {data.record_count} records')
        self.stdout.write(f'Found {len(data.hospitals)} unique hospitals')
        self.stdout.write(f'Found {len(data.doctors)} unique doctors')

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_import_sql(data, source_name=source.name), encoding='utf-8')
        self.stdout.write(self.style.SUCCESS(f'SQL file generated: {target}'))
        self.stdout.write('   Copy and paste this into Supabase SQL Editor to import data')
