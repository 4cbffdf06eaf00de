"""
Management command importing the website CSV export.

Reads ``settings.IMPORT_CSV_PATH`` and reconciles hospitals, doctors and
doctor/hospital links into Supabase (or the local database with
``--local``).  Safe to re-run: rows that already exist are looked up
instead of duplicated.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from directory.exceptions import ConfigurationError, CsvParseError
from directory.services.normalize import normalize
from directory.services.records import read_records
from directory.services.store import OrmStore, SupabaseStore
from directory.services.writer import ReconcilingWriter


class Command(BaseCommand):
    help = "Import the CSV export into the hospitals, doctors and doctor_hospitals tables."

    def add_arguments(self, parser):
        parser.add_argument('--local', action='store_true',
                            help='Write to the project database instead of Supabase.')

    def handle(self, *args, **options):
        try:
            store = OrmStore() if options['local'] else SupabaseStore.from_settings()
        except ConfigurationError as exc:
            raise CommandError(str(exc))

        path = settings.IMPORT_CSV_PATH
        self.stdout.write('Reading CSV file...')
        try:
            records = read_records(path)
        except FileNotFoundError:
            raise CommandError(f'CSV file not found: {path}')
        except CsvParseError as exc:
            raise CommandError(f'Could not parse {path}: {exc}')

        data = normalize(records)
        self.stdout.write(f'Found {data.record_count} records in CSV')
        self.stdout.write(f'Found {len(data.hospitals)} unique hospitals')
        self.stdout.write(f'Found {len(data.doctors)} unique doctors\n')

        writer = ReconcilingWriter(store, batch_size=settings.IMPORT_BATCH_SIZE, progress=self.progress)

        self.stdout.write('Inserting hospitals...')
        hospitals = writer.write_hospitals(data.hospitals)
        self.stdout.write(f'   {hospitals.ready} hospitals ready\n')

        self.stdout.write('Inserting doctors...')
        doctors = writer.write_doctors(data.doctors)
        self.stdout.write(f'   {doctors.ready} doctors ready\n')

        self.stdout.write('Creating doctor-hospital relationships...')
        links = writer.write_links(data.links, hospitals.ids, doctors.ids)
        self.stdout.write(f'   {links.created} relationships created\n')

        self.stdout.write('=' * 39)
        self.stdout.write(self.style.SUCCESS('IMPORT COMPLETE!'))
        self.stdout.write('=' * 39)
        self.stdout.write(f'   Hospitals:     {hospitals.ready}/{len(hospitals.keys)}')
        self.stdout.write(f'   Doctors:       {doctors.ready}/{len(doctors.keys)}')
        self.stdout.write(f'   Relationships: {links.created}')
        self.stdout.write(f'   Already there: {links.already_present}')
        if links.orphaned:
            self.stdout.write(f'   Unresolved:    {links.orphaned}')
        dropped = len(hospitals.missing) + len(doctors.missing) + links.failed
        if dropped:
            self.stdout.write(self.style.WARNING(f'   Dropped rows:  {dropped}'))
        self.stdout.write('=' * 39)

    def progress(self, table, done, total):
        if table != 'hospitals':
            self.stdout.write(f'   Progress: {done}/{total}')
