"""Coin ledger helpers providing locked credit/debit operations with idempotency."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from django.db import transaction

from rewards.exceptions import AccountNotFound, IdempotencyConflict, InsufficientFunds
from rewards.models import LedgerEntry, PlayerAccount


@dataclass(frozen=True)
class LedgerOperationResult:
    account: PlayerAccount
    entry: LedgerEntry
    created: bool


def lock_account(user_id: int) -> PlayerAccount:
    """Return the player's account row locked for the rest of the current transaction."""

    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("lock_account() must be called inside transaction.atomic().")
    try:
        return PlayerAccount.objects.select_for_update().get(user_id=user_id)
    except PlayerAccount.DoesNotExist as exc:
        raise AccountNotFound(f"No ledger account for user {user_id}.") from exc


def debit(
    account: PlayerAccount,
    amount: int,
    *,
    entry_type: str = LedgerEntry.EntryType.REDEMPTION,
    idempotency_key: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerOperationResult:
    """Debit a locked account. The caller owns the surrounding transaction."""

    if amount <= 0:
        raise ValueError("Amount must be a positive integer for debits.")
    return _apply_entry(
        account=account,
        amount=-amount,
        entry_type=entry_type,
        idempotency_key=idempotency_key,
        description=description,
        metadata=metadata,
    )


def credit(
    account: PlayerAccount,
    amount: int,
    *,
    entry_type: str = LedgerEntry.EntryType.ADJUSTMENT,
    idempotency_key: Optional[str] = None,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerOperationResult:
    """Credit a locked account. The caller owns the surrounding transaction."""

    if amount <= 0:
        raise ValueError("Amount must be a positive integer for credits.")
    return _apply_entry(
        account=account,
        amount=amount,
        entry_type=entry_type,
        idempotency_key=idempotency_key,
        description=description,
        metadata=metadata,
    )


def adjust_balance(
    user_id: int,
    amount: int,
    reason: str,
    idempotency_key: Optional[str] = None,
    *,
    actor: Optional[str] = None,
) -> LedgerOperationResult:
    """Record a manual adjustment (positive or negative) against a player's balance."""

    if amount == 0:
        raise ValueError("Adjustment amount must be non-zero.")

    metadata = {"actor": actor} if actor else None
    with transaction.atomic():
        account = lock_account(user_id)
        return _apply_entry(
            account=account,
            amount=amount,
            entry_type=LedgerEntry.EntryType.ADJUSTMENT,
            idempotency_key=idempotency_key,
            description=reason or "",
            metadata=metadata,
        )


def _apply_entry(
    *,
    account: PlayerAccount,
    amount: int,
    entry_type: str,
    idempotency_key: Optional[str],
    description: str,
    metadata: Optional[dict],
) -> LedgerOperationResult:
    existing = find_entry(idempotency_key)
    if existing:
        _validate_existing(existing, account, amount, entry_type)
        return LedgerOperationResult(account=account, entry=existing, created=False)

    new_balance = (account.balance or 0) + amount
    if new_balance < 0:
        raise InsufficientFunds(
            f"Balance {account.balance} is insufficient for a debit of {-amount} coins."
        )

    account.balance = new_balance
    account.save(update_fields=["balance", "updated_at"])

    entry = LedgerEntry.objects.create(
        account=account,
        amount=amount,
        type=entry_type,
        balance_after=new_balance,
        idempotency_key=idempotency_key or None,
        description=description or "",
        metadata=metadata,
    )
    return LedgerOperationResult(account=account, entry=entry, created=True)


def find_entry(idempotency_key: Optional[str]) -> Optional[LedgerEntry]:
    if not idempotency_key:
        return None
    return LedgerEntry.objects.filter(idempotency_key=idempotency_key).first()


def _validate_existing(entry: LedgerEntry, account: PlayerAccount, amount: int, entry_type: str) -> None:
    if entry.account_id != account.id:
        raise IdempotencyConflict("Existing entry is tied to a different account.")
    if entry.type != entry_type:
        raise IdempotencyConflict("Existing entry type does not match the request.")
    if entry.amount != amount:
        raise IdempotencyConflict("Existing entry amount does not match the request.")
