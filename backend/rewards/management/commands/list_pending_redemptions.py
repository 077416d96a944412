"""Management command to list redemptions waiting on the subscription service."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from rewards.models import PendingRedemption
from rewards.services import guard


class Command(BaseCommand):
    help = "List pending redemptions whose coins are debited but not yet confirmed."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--stale",
            action="store_true",
            help="Only show unresolved records older than the staleness window.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=50,
            help="Maximum number of records to show.",
        )

    def handle(self, *args, **options) -> None:
        if options.get("stale"):
            queryset = guard.stale_queryset()
        else:
            queryset = PendingRedemption.objects.order_by("created_at")

        limit = options.get("limit")
        if limit is not None:
            queryset = queryset[:limit]

        records = list(queryset)
        if not records:
            self.stdout.write(self.style.WARNING("No pending redemptions matched."))
            return

        for record in records:
            flag = " [flagged]" if record.flagged_at else ""
            self.stdout.write(
                f"{record.fingerprint} user={record.user_id} days={record.days} "
                f"coins={record.coins_required} stage={record.stage} attempts={record.attempts} "
                f"created={record.created_at.isoformat()}{flag}"
            )
            if record.last_error:
                self.stdout.write(f"    last_error: {record.last_error}")
        self.stdout.write(self.style.SUCCESS(f"{len(records)} pending redemption(s)."))
