"""Redemption coordinator: exchange coins for subscription days.

The debit commits locally before the subscription service is called, so a
player is never granted time without a recorded debit. A failed or ambiguous
extension is not rolled back; the pending record lets a retry with the same
request id resume at the extension step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction

from rewards.exceptions import (
    AccountNotFound,
    InsufficientFunds,
    PendingRedemptionNotFound,
    RedemptionValidationError,
    RemoteResponseError,
    RewardsError,
    StoreError,
    SubscriptionServiceError,
)
from rewards.models import LedgerEntry, PendingRedemption, PlayerAccount
from rewards.observability.logging import log_redemption_event
from rewards.observability.metrics import REDEMPTION_OUTCOME_COUNT, REDEMPTION_RESUMED_COUNT
from rewards.services import guard, ledger
from rewards.services.outcomes import (
    Completed,
    Failed,
    FailureStage,
    RedemptionOutcome,
    Rejected,
    RejectionReason,
)
from rewards.services.subscription_client import SubscriptionClient, get_subscription_client

logger = logging.getLogger(__name__)
saga_logger = logging.getLogger("rewards.saga")

Stage = PendingRedemption.Stage


@dataclass(frozen=True)
class RedemptionRequest:
    user_id: int
    days: int
    request_id: str
    fingerprint: str
    coins_required: int


def coins_per_day() -> int:
    return int(getattr(settings, "REWARDS_COINS_PER_DAY", 30))


def validate_request(user_id: Any, days: Any) -> Tuple[int, int]:
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise RedemptionValidationError("user_id must be an integer.")
    if isinstance(days, bool) or not isinstance(days, int):
        raise RedemptionValidationError("days must be an integer.")
    if days <= 0:
        raise RedemptionValidationError("days must be greater than zero.")
    return user_id, days


class RedemptionCoordinator:
    """Runs one redemption to a single terminal outcome. Never retries internally."""

    def __init__(self, client: Optional[SubscriptionClient] = None, *, unit_price: Optional[int] = None) -> None:
        self._client = client
        self.unit_price = unit_price if unit_price is not None else coins_per_day()

    @property
    def client(self) -> SubscriptionClient:
        if self._client is None:
            self._client = get_subscription_client()
        return self._client

    def redeem(self, user_id: Any, days: Any, request_id: Optional[str] = None) -> RedemptionOutcome:
        try:
            user_id, days = validate_request(user_id, days)
        except RedemptionValidationError as exc:
            return self._finish(Rejected(reason=RejectionReason.INVALID_REQUEST, detail=str(exc)))

        request_id = request_id or guard.new_request_id()
        request = RedemptionRequest(
            user_id=user_id,
            days=days,
            request_id=request_id,
            fingerprint=guard.build_fingerprint(user_id, days, request_id),
            coins_required=days * self.unit_price,
        )

        try:
            record = guard.find(request.fingerprint)
        except DatabaseError as exc:
            return self._store_failure(request, exc, debit_committed=False)
        if record is not None:
            return self._resume(request, record)

        try:
            record, resumed = self._debit(request)
        except AccountNotFound:
            return self._finish(self._rejected(request, RejectionReason.UNKNOWN_USER))
        except InsufficientFunds:
            return self._finish(self._rejected(request, RejectionReason.INSUFFICIENT_BALANCE))
        except DatabaseError as exc:
            return self._store_failure(request, exc, debit_committed=False)

        if record is None:
            return self._replay_completed(request)
        if resumed:
            return self._resume(request, record)

        log_redemption_event(
            message="Coins debited for redemption",
            user_id=request.user_id,
            fingerprint=request.fingerprint,
            stage=record.stage,
            extra={"coins": record.coins_required, "balance_after": record.balance_after},
        )
        return self._extend(request, record)

    def resume(self, record: PendingRedemption) -> RedemptionOutcome:
        """Re-drive an existing pending record (operator-initiated retry)."""
        request = RedemptionRequest(
            user_id=record.user_id,
            days=record.days,
            request_id=record.request_id,
            fingerprint=record.fingerprint,
            coins_required=record.coins_required,
        )
        return self._resume(request, record)

    def _debit(self, request: RedemptionRequest) -> Tuple[Optional[PendingRedemption], bool]:
        """Debit and create the DEBITED record in one transaction.

        Returns ``(None, True)`` when this request already completed earlier.
        """
        with transaction.atomic():
            account = ledger.lock_account(request.user_id)

            # A concurrent request with the same fingerprint may have committed while we waited for the lock.
            existing = guard.find(request.fingerprint)
            if existing is not None:
                return existing, True

            # The record is deleted on success; the debit entry outlives it.
            if ledger.find_entry(guard.debit_key(request.fingerprint)) is not None:
                return None, True

            if account.balance < request.coins_required:
                raise InsufficientFunds(
                    f"Balance {account.balance} is below the {request.coins_required} coins required."
                )

            result = ledger.debit(
                account,
                request.coins_required,
                entry_type=LedgerEntry.EntryType.REDEMPTION,
                idempotency_key=guard.debit_key(request.fingerprint),
                description=f"Redeemed {request.days} subscription day(s)",
                metadata={"days": request.days, "plan": account.plan, "fingerprint": request.fingerprint},
            )
            record = guard.begin(
                account=result.account,
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                days=request.days,
                coins_required=request.coins_required,
                balance_after=result.entry.balance_after,
            )
        return record, False

    def _replay_completed(self, request: RedemptionRequest) -> RedemptionOutcome:
        """Answer a replay whose pending record was already finalized.

        The ledger keeps the balance this debit produced, but not the expiry the
        service returned for it; ``subscription_end`` is the account's current
        cached expiry, which later redemptions may have moved forward.
        """
        try:
            entry = ledger.find_entry(guard.debit_key(request.fingerprint))
            refunded = ledger.find_entry(guard.refund_key(request.fingerprint)) is not None
            account = PlayerAccount.objects.get(pk=entry.account_id)
        except DatabaseError as exc:
            return self._store_failure(request, exc, debit_committed=True)

        if refunded:
            return self._finish(
                Failed(
                    stage=FailureStage.EXTENSION,
                    detail="Redemption was refunded by an operator; submit a new request.",
                    fingerprint=request.fingerprint,
                    request_id=request.request_id,
                )
            )

        REDEMPTION_RESUMED_COUNT.inc()
        log_redemption_event(
            message="Redemption already completed; returning recorded result",
            user_id=request.user_id,
            fingerprint=request.fingerprint,
        )
        if account.subscription_end is None:
            return self._store_failure(
                request,
                StoreError("Completed redemption has no recorded subscription expiry."),
                debit_committed=True,
            )
        return self._finish(
            Completed(
                new_balance=entry.balance_after,
                subscription_end=account.subscription_end,
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                resumed=True,
            )
        )

    def _resume(self, request: RedemptionRequest, record: PendingRedemption) -> RedemptionOutcome:
        REDEMPTION_RESUMED_COUNT.inc()
        log_redemption_event(
            message="Resuming redemption without a new debit",
            user_id=request.user_id,
            fingerprint=request.fingerprint,
            stage=record.stage,
            extra={"attempts": record.attempts},
        )
        if record.stage == Stage.EXTENDED:
            return self._complete(request, record, resumed=True)
        return self._extend(request, record, resumed=True)

    def _extend(self, request: RedemptionRequest, record: PendingRedemption, *, resumed: bool = False) -> RedemptionOutcome:
        try:
            record = guard.mark_extend_requested(record)
        except PendingRedemptionNotFound:
            return self._completed_elsewhere(request, record)
        except (DatabaseError, RewardsError) as exc:
            return self._store_failure(request, exc, debit_committed=True)

        if record.stage == Stage.EXTENDED:
            return self._complete(request, record, resumed=resumed)

        try:
            subscription_end = self.client.extend(
                record.user_id,
                record.days,
                record.account.plan,
                idempotency_key=record.fingerprint,
            )
        except RemoteResponseError as exc:
            return self._extension_failure(request, record, FailureStage.EXTENSION_PARSE, exc)
        except SubscriptionServiceError as exc:
            return self._extension_failure(request, record, FailureStage.EXTENSION, exc)

        try:
            record = guard.mark_extended(record, subscription_end)
        except PendingRedemptionNotFound:
            return self._completed_elsewhere(request, record)
        except (DatabaseError, RewardsError) as exc:
            return self._store_failure(request, exc, debit_committed=True)

        return self._complete(request, record, resumed=resumed)

    def _complete(self, request: RedemptionRequest, record: PendingRedemption, *, resumed: bool) -> RedemptionOutcome:
        try:
            guard.finalize(record)
        except PendingRedemptionNotFound:
            pass
        except DatabaseError:
            # The record stays EXTENDED; the next replay finalizes it without calling the service.
            logger.exception("Failed to finalize extended redemption %s", record.fingerprint)

        log_redemption_event(
            message="Redemption completed",
            user_id=record.user_id,
            fingerprint=record.fingerprint,
            stage=Stage.EXTENDED,
            extra={"subscription_end": record.subscription_end.isoformat(), "resumed": resumed},
        )
        return self._finish(
            Completed(
                new_balance=record.balance_after,
                subscription_end=record.subscription_end,
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                resumed=resumed,
            )
        )

    def _completed_elsewhere(self, request: RedemptionRequest, record: PendingRedemption) -> RedemptionOutcome:
        """A concurrent replay finalized the record while this run was resuming it."""
        try:
            subscription_end = (
                PlayerAccount.objects.filter(pk=record.account_id)
                .values_list("subscription_end", flat=True)
                .first()
            )
        except DatabaseError as exc:
            return self._store_failure(request, exc, debit_committed=True)
        if subscription_end is None:
            return self._store_failure(
                request,
                StoreError("Pending redemption vanished before it was extended."),
                debit_committed=True,
            )
        return self._finish(
            Completed(
                new_balance=record.balance_after,
                subscription_end=subscription_end,
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                resumed=True,
            )
        )

    def _extension_failure(
        self,
        request: RedemptionRequest,
        record: PendingRedemption,
        stage: str,
        exc: Exception,
    ) -> RedemptionOutcome:
        detail = str(exc)
        try:
            guard.record_failure(record, detail)
        except (DatabaseError, RewardsError):
            saga_logger.critical(
                "Could not record extension failure for %s; record may be left in %s",
                request.fingerprint,
                record.stage,
                exc_info=True,
            )
        log_redemption_event(
            message="Subscription extension failed after debit",
            user_id=request.user_id,
            fingerprint=request.fingerprint,
            stage=stage,
            extra={"detail": detail, "coins": record.coins_required},
            level=logging.ERROR,
        )
        return self._finish(
            Failed(
                stage=stage,
                detail=detail,
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                debit_committed=True,
            )
        )

    def _store_failure(self, request: RedemptionRequest, exc: Exception, *, debit_committed: bool) -> RedemptionOutcome:
        if debit_committed:
            saga_logger.critical(
                "Ledger store failed after debit commit for user %s fingerprint %s: %s",
                request.user_id,
                request.fingerprint,
                exc,
            )
        else:
            logger.error("Ledger store failed before debit for user %s: %s", request.user_id, exc)
        return self._finish(
            Failed(
                stage=FailureStage.STORE,
                detail=str(exc),
                fingerprint=request.fingerprint,
                request_id=request.request_id,
                debit_committed=debit_committed,
            )
        )

    @staticmethod
    def _rejected(request: RedemptionRequest, reason: str) -> Rejected:
        return Rejected(reason=reason, fingerprint=request.fingerprint, request_id=request.request_id)

    @staticmethod
    def _finish(outcome: RedemptionOutcome) -> RedemptionOutcome:
        if isinstance(outcome, Rejected):
            detail = outcome.reason
        elif isinstance(outcome, Failed):
            detail = outcome.stage
        else:
            detail = ""
        REDEMPTION_OUTCOME_COUNT.labels(status=outcome.status, detail=detail).inc()
        return outcome
