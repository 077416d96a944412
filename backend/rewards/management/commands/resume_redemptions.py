"""Management command to re-drive pending redemptions through the extension step."""
from __future__ import annotations

from typing import Iterable, Optional

from django.core.management.base import BaseCommand, CommandError

from rewards.models import PendingRedemption
from rewards.services import Completed, RedemptionCoordinator


class Command(BaseCommand):
    help = "Resume pending redemptions without debiting coins again."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--fingerprint",
            dest="fingerprints",
            action="append",
            help="Resume only the specified redemption. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of redemptions to resume in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview redemptions that would be resumed without calling the subscription service.",
        )

    def handle(self, *args, **options) -> None:
        fingerprints: Optional[Iterable[str]] = options.get("fingerprints")
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")

        queryset = PendingRedemption.objects.select_related("account").order_by("created_at")
        if fingerprints:
            queryset = queryset.filter(fingerprint__in=list(fingerprints))
        if limit is not None:
            queryset = queryset[:limit]

        records = list(queryset)
        if not records:
            self.stdout.write(self.style.WARNING("No pending redemptions matched the requested filters."))
            return

        coordinator = None if dry_run else RedemptionCoordinator()
        completed = 0
        failed = 0

        for record in records:
            self.stdout.write(f"Resuming redemption {record.fingerprint} (stage={record.stage})")
            if dry_run:
                continue

            outcome = coordinator.resume(record)
            if isinstance(outcome, Completed):
                completed += 1
            else:
                failed += 1
                self.stdout.write(self.style.ERROR(f"    {outcome.to_payload()}"))

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"Dry run complete. {len(records)} redemptions would be resumed.")
            )
            return

        summary = f"Resume complete: {completed} completed, {failed} failed, {len(records)} total."
        if failed:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))
