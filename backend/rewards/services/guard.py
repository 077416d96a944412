"""Idempotency guard for redemptions.

Persists one ``PendingRedemption`` per fingerprint from the moment coins are
debited until the subscription service confirms the extension, so a retried
request resumes the saga instead of charging the player twice.
"""
from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from rewards.exceptions import InvalidStageTransition, PendingRedemptionNotFound, RewardsError
from rewards.models import LedgerEntry, PendingRedemption, PlayerAccount
from rewards.observability.logging import log_redemption_event
from rewards.observability.metrics import STALE_REDEMPTION_COUNT
from rewards.services import ledger, saga

logger = logging.getLogger(__name__)

Stage = PendingRedemption.Stage


def build_fingerprint(user_id: int, days: int, request_id: str) -> str:
    digest = hashlib.sha256()
    digest.update(str(user_id).encode("utf-8"))
    digest.update(b"|")
    digest.update(str(days).encode("utf-8"))
    digest.update(b"|")
    digest.update(request_id.encode("utf-8"))
    return digest.hexdigest()


def debit_key(fingerprint: str) -> str:
    return f"redeem:{fingerprint}"


def refund_key(fingerprint: str) -> str:
    return f"refund:{fingerprint}"


def new_request_id() -> str:
    return uuid.uuid4().hex


def stale_after() -> timedelta:
    return timedelta(minutes=getattr(settings, "REWARDS_PENDING_STALE_AFTER_MINUTES", 60))


def find(fingerprint: str) -> Optional[PendingRedemption]:
    """Return the record for ``fingerprint`` if its coins were already debited."""
    return (
        PendingRedemption.objects.select_related("account")
        .filter(fingerprint=fingerprint, stage__in=saga.RESUMABLE_STAGES)
        .first()
    )


def begin(
    *,
    account: PlayerAccount,
    fingerprint: str,
    request_id: str,
    days: int,
    coins_required: int,
    balance_after: int,
) -> PendingRedemption:
    """Create the DEBITED record. Must run in the debit's transaction."""
    saga.ensure_transition(saga.INITIATED, Stage.DEBITED)
    return PendingRedemption.objects.create(
        fingerprint=fingerprint,
        request_id=request_id,
        account=account,
        user_id=account.user_id,
        days=days,
        coins_required=coins_required,
        balance_after=balance_after,
        stage=Stage.DEBITED,
    )


def mark_extend_requested(record: PendingRedemption) -> PendingRedemption:
    """Move the record to EXTEND_REQUESTED before the remote call is issued.

    A record already in EXTEND_REQUESTED (an earlier run crashed mid-call) or
    EXTENDED is returned as-is.
    """
    with transaction.atomic():
        locked = _lock(record)
        if locked.stage == Stage.DEBITED:
            saga.ensure_transition(locked.stage, Stage.EXTEND_REQUESTED)
            locked.stage = Stage.EXTEND_REQUESTED
            locked.save(update_fields=["stage", "updated_at"])
        return locked


def mark_extended(record: PendingRedemption, subscription_end: datetime) -> PendingRedemption:
    with transaction.atomic():
        locked = _lock(record)
        if locked.stage == Stage.EXTENDED:
            return locked
        saga.ensure_transition(locked.stage, Stage.EXTENDED)
        locked.stage = Stage.EXTENDED
        locked.subscription_end = subscription_end
        locked.last_error = ""
        locked.save(update_fields=["stage", "subscription_end", "last_error", "updated_at"])
        return locked


def record_failure(record: PendingRedemption, detail: str) -> PendingRedemption:
    """Return the record to DEBITED after a failed extension call."""
    with transaction.atomic():
        locked = _lock(record)
        if locked.stage == Stage.EXTENDED:
            return locked
        if locked.stage != Stage.DEBITED:
            saga.ensure_transition(locked.stage, Stage.DEBITED)
        locked.stage = Stage.DEBITED
        locked.attempts += 1
        locked.last_error = detail
        locked.save(update_fields=["stage", "attempts", "last_error", "updated_at"])
        return locked


def finalize(record: PendingRedemption) -> None:
    """Cache the confirmed expiry on the account and drop the record."""
    with transaction.atomic():
        locked = _lock(record)
        if locked.stage != Stage.EXTENDED:
            raise InvalidStageTransition(
                f"Only extended redemptions can be finalized (stage={locked.stage})."
            )
        account = PlayerAccount.objects.select_for_update().get(pk=locked.account_id)
        if account.subscription_end is None or locked.subscription_end > account.subscription_end:
            account.subscription_end = locked.subscription_end
            account.save(update_fields=["subscription_end", "updated_at"])
        locked.delete()


def stale_queryset(now: Optional[datetime] = None):
    cutoff = (now or timezone.now()) - stale_after()
    return PendingRedemption.objects.filter(
        stage__in=saga.UNRESOLVED_STAGES,
        created_at__lte=cutoff,
    ).order_by("created_at")


def flag_stale(now: Optional[datetime] = None) -> List[PendingRedemption]:
    """Surface unresolved records older than the staleness window. Never retries them."""
    now = now or timezone.now()
    flagged: List[PendingRedemption] = []
    for record in stale_queryset(now).filter(flagged_at__isnull=True):
        updated = PendingRedemption.objects.filter(pk=record.pk, flagged_at__isnull=True).update(flagged_at=now)
        if not updated:
            continue
        record.flagged_at = now
        flagged.append(record)
        STALE_REDEMPTION_COUNT.inc()
        log_redemption_event(
            message="Pending redemption needs manual reconciliation",
            user_id=record.user_id,
            fingerprint=record.fingerprint,
            stage=record.stage,
            extra={
                "coins_required": record.coins_required,
                "attempts": record.attempts,
                "last_error": record.last_error,
                "created_at": record.created_at.isoformat(),
            },
            level=logging.WARNING,
        )
    return flagged


def refund(fingerprint: str, *, actor: Optional[str] = None, force: bool = False) -> ledger.LedgerOperationResult:
    """Operator compensation: give the coins back and close the redemption.

    Only DEBITED records are refundable. An EXTEND_REQUESTED record may have an
    extension call in flight; ``force`` allows it once the record was flagged
    stale, for calls that are known to have died.
    """
    with transaction.atomic():
        try:
            record = PendingRedemption.objects.select_for_update().get(fingerprint=fingerprint)
        except PendingRedemption.DoesNotExist as exc:
            raise PendingRedemptionNotFound(f"No pending redemption {fingerprint}.") from exc
        if record.stage == Stage.EXTENDED:
            raise RewardsError("Extended redemptions cannot be refunded.")
        if record.stage == Stage.EXTEND_REQUESTED and not (force and record.flagged_at):
            raise RewardsError(
                "An extension call may still be in flight; resume the redemption first "
                "or force the refund once it has been flagged stale."
            )

        account = ledger.lock_account(record.user_id)
        result = ledger.credit(
            account,
            record.coins_required,
            entry_type=LedgerEntry.EntryType.REFUND,
            idempotency_key=refund_key(fingerprint),
            description=f"Refund of {record.days} day redemption",
            metadata={"fingerprint": fingerprint, "actor": actor} if actor else {"fingerprint": fingerprint},
        )
        record.delete()

    log_redemption_event(
        message="Pending redemption refunded",
        user_id=record.user_id,
        fingerprint=fingerprint,
        extra={"coins": record.coins_required, "actor": actor, "stage": record.stage, "forced": force},
    )
    return result


def _lock(record: PendingRedemption) -> PendingRedemption:
    try:
        return (
            PendingRedemption.objects.select_for_update(of=("self",))
            .select_related("account")
            .get(pk=record.pk)
        )
    except PendingRedemption.DoesNotExist as exc:
        raise PendingRedemptionNotFound(f"Pending redemption {record.fingerprint} no longer exists.") from exc
