from django.core.management.base import BaseCommand, CommandError

from directory.exceptions import ConfigurationError, StoreError
from directory.services import maintenance
from directory.services.store import OrmStore, SupabaseStore

USAGE = """Usage: python manage.py manage_doctors <command> [--local]

Commands:
  reset-status      - Reset all status values to null
  find-duplicates   - Show duplicate doctor names
  remove-duplicates - Remove duplicate doctors (keeps oldest)
  all               - Run all cleanup operations"""


class Command(BaseCommand):
    help = "Doctor table maintenance: reset status, find or remove duplicate doctors."

    def add_arguments(self, parser):
        parser.add_argument('command', nargs='?', default='')
        parser.add_argument('--local', action='store_true',
                            help='Work on the project database instead of Supabase.')

    def handle(self, *args, **options):
        command = options['command']
        self.stdout.write('Lenmed Database Management Script')
        self.stdout.write('==================================\n')
        steps = {
            'reset-status': [self.reset_status],
            'find-duplicates': [self.find_duplicates],
            'remove-duplicates': [self.find_duplicates, self.remove_duplicates],
            'all': [self.show_stats, self.find_duplicates, self.remove_duplicates,
                    self.reset_status, self.show_stats],
        }.get(command)
        if steps is None:
            self.stdout.write(USAGE)
            return

        try:
            store = OrmStore() if options['local'] else SupabaseStore.from_settings()
        except ConfigurationError as exc:
            raise CommandError(str(exc))

        for step in steps:
            try:
                step(store)
            except StoreError as exc:
                # report and move on to the next step
                self.stderr.write(self.style.ERROR(f'{step.__name__.replace("_", " ")} failed: {exc}'))

    def reset_status(self, store):
        self.stdout.write('Resetting status column to null for all doctors...')
        maintenance.reset_status(store)
        self.stdout.write(self.style.SUCCESS('Status column reset successfully!'))

    def find_duplicates(self, store):
        self.stdout.write('\nFinding duplicate doctors...')
        groups = maintenance.find_duplicates(store)
        self.stdout.write(f'Found {len(groups)} duplicate name groups:')
        for group in groups:
            self.stdout.write(f'  - "{group.name}" appears {group.count} times')
        return groups

    def remove_duplicates(self, store):
        self.stdout.write('\nRemoving duplicate doctors (keeping first entry)...')
        removed = maintenance.remove_duplicates(store)
        if not removed:
            self.stdout.write('No duplicates to remove!')
            return
        self.stdout.write(self.style.SUCCESS(f'Successfully removed {removed} duplicate doctors!'))

    def show_stats(self, store):
        self.stdout.write(f'\nTotal doctors in database: {maintenance.doctor_count(store)}')
