"""Management command to refund a redemption that will not be extended."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from rewards.exceptions import RewardsError
from rewards.services import guard


class Command(BaseCommand):
    help = "Credit the coins of an unresolved pending redemption back and close it."

    def add_arguments(self, parser) -> None:
        parser.add_argument("fingerprint", help="Fingerprint of the pending redemption.")
        parser.add_argument(
            "--actor",
            default=None,
            help="Operator identifier recorded on the refund entry.",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Allow refunding a flagged record stuck in extend_requested.",
        )

    def handle(self, *args, **options) -> None:
        fingerprint = options["fingerprint"]
        try:
            result = guard.refund(fingerprint, actor=options.get("actor"), force=options.get("force", False))
        except RewardsError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Refunded {result.entry.amount} coins to user {result.account.user_id}; "
                f"balance is now {result.entry.balance_after}."
            )
        )
