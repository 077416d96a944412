"""Management command to record a manual coin adjustment."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from rewards.exceptions import RewardsError
from rewards.services import ledger


class Command(BaseCommand):
    help = "Credit (positive amount) or debit (negative amount) a player's coin balance."

    def add_arguments(self, parser) -> None:
        parser.add_argument("user_id", type=int)
        parser.add_argument("amount", type=int, help="Signed coin amount.")
        parser.add_argument("--reason", default="", help="Description stored on the ledger entry.")
        parser.add_argument(
            "--idempotency-key",
            dest="idempotency_key",
            default=None,
            help="Makes repeated runs with the same key a no-op.",
        )
        parser.add_argument("--actor", default=None, help="Operator identifier.")

    def handle(self, *args, **options) -> None:
        try:
            result = ledger.adjust_balance(
                options["user_id"],
                options["amount"],
                options.get("reason") or "",
                options.get("idempotency_key"),
                actor=options.get("actor"),
            )
        except (RewardsError, ValueError) as exc:
            raise CommandError(str(exc)) from exc

        if not result.created:
            self.stdout.write(self.style.WARNING("Adjustment already applied for this idempotency key."))
            return
        self.stdout.write(
            self.style.SUCCESS(
                f"Applied {result.entry.amount:+d} coins to user {result.account.user_id}; "
                f"balance is now {result.entry.balance_after}."
            )
        )
