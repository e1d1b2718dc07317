import logging

from django.core.management.base import BaseCommand, CommandError

from livestock.demo import flush_demo_data, load_demo_data
from livestock.models import Tenant

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Load the demo tenants, users and herd."

    def add_arguments(self, parser):
        parser.add_argument('--flush', action='store_true', help="Delete existing livestock data first")

    def handle(self, *args, **options):
        if options['flush']:
            flush_demo_data()
            self.stdout.write("Existing data removed.")
        elif Tenant.objects.exists():
            raise CommandError("Data already present. Re-run with --flush to replace it.")

        counts = load_demo_data()
        for name, count in counts.items():
            logger.debug("%s: %s", name, count)
        self.stdout.write(self.style.SUCCESS(
            f"Seeded {counts['Tenant']} tenants, {counts['FarmUser']} users and {counts['Animal']} animals."
        ))
