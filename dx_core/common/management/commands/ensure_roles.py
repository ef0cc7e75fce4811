# dx_core/common/management/commands/ensure_roles.py
from django.contrib.auth.models import Group
from django.core.management.base import BaseCommand

from dx_core.common.permissions import ALL_ROLES


class Command(BaseCommand):
    help = "Create the ADMIN/CLINICIAN/NURSE/TECHNICIAN/READONLY groups if missing."

    def handle(self, *args, **options):
        fresh = [name for name in ALL_ROLES if Group.objects.get_or_create(name=name)[1]]
        if options["verbosity"] > 1:
            for name in fresh:
                self.stdout.write(f"  created group {name}")
        self.stdout.write(self.style.SUCCESS(f"Roles ensured. Newly created: {len(fresh)}"))
