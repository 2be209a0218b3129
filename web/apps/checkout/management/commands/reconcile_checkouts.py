"""Settle checkouts left on an unknown payment outcome and retry owed cart clears.

Run periodically (cron, Kubernetes CronJob)::

    python manage.py reconcile_checkouts
"""

from django.core.management.base import BaseCommand

from apps.checkout.providers import get_checkout_orchestrator


class Command(BaseCommand):
    help = "Resolve unknown/stale checkout attempts against the payment gateway and retry pending cart clears."

    def handle(self, *args, **options):
        report = get_checkout_orchestrator().reconcile()
        summary = ", ".join(f"{name}={value}" for name, value in vars(report).items())
        self.stdout.write(f"reconciliation: {summary}")
        if report.errors:
            self.stderr.write(self.style.WARNING(f"{report.errors} item(s) deferred to the next run"))
