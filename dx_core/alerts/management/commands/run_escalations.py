# dx_core/alerts/management/commands/run_escalations.py
import time

from django.core.management.base import BaseCommand

from dx_core.alerts.escalation import EscalationService


class Command(BaseCommand):
    help = "Advance critical-value escalations whose next notification attempt is due."

    def add_arguments(self, parser):
        parser.add_argument("--loop", action="store_true", help="Keep running, polling every --interval seconds.")
        parser.add_argument("--interval", type=float, default=30.0)

    def handle(self, *args, **options):
        service = EscalationService()
        while True:
            advanced = service.process_due()
            self.stdout.write(self.style.SUCCESS(f"Escalations advanced: {advanced}"))
            if not options["loop"]:
                return
            time.sleep(options["interval"])
