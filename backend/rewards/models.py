"""Reward ledger models: player balances, the immutable entry trail, and saga bookkeeping."""
import uuid

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q


class PlayerAccount(models.Model):
    """Coin balance and idle subscription metadata for a single player."""

    id = models.BigAutoField(primary_key=True)
    user_id = models.BigIntegerField(
        unique=True,
        help_text="Stable external identifier of the player (e.g. Telegram id)",
    )
    balance = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Current coin balance",
    )
    plan = models.CharField(
        max_length=64,
        default="basic",
        help_text="Subscription tier forwarded to the subscription service",
    )
    subscription_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last expiry confirmed by the subscription service",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "rewards_player_account"
        verbose_name = "Player account"
        verbose_name_plural = "Player accounts"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(balance__gte=0),
                name="player_account_balance_non_negative",
            ),
        ]

    def clean(self):
        super().clean()
        if self.balance is not None and self.balance < 0:
            raise ValidationError("PlayerAccount balance cannot be negative.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"PlayerAccount<{self.user_id}:{self.balance}>"


class LedgerEntry(models.Model):
    """Immutable audit trail for every coin balance change."""

    class EntryType(models.TextChoices):
        REDEMPTION = "REDEMPTION", "Redemption"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"
        REFUND = "REFUND", "Refund"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    account = models.ForeignKey(
        PlayerAccount,
        on_delete=models.PROTECT,
        related_name="entries",
        help_text="Account affected by this entry",
    )
    amount = models.IntegerField(
        help_text="Signed coin amount; positive for credits, negative for debits",
    )
    type = models.CharField(
        max_length=20,
        choices=EntryType.choices,
        help_text="Categorisation of the coin movement",
    )
    balance_after = models.IntegerField(
        help_text="Account balance immediately after this entry was applied",
    )
    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Unique key to guarantee idempotent entry writes",
    )
    description = models.TextField(blank=True)
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "rewards_ledger_entry"
        verbose_name = "Ledger entry"
        verbose_name_plural = "Ledger entries"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=~Q(amount=0), name="ledger_entry_non_zero"),
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_ledger_entry_idempotency_key",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("LedgerEntry records are immutable and cannot be updated.")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("LedgerEntry records are immutable and cannot be deleted.")

    def __str__(self):
        return f"LedgerEntry<{self.type}:{self.amount} for {self.account_id}>"


class PendingRedemption(models.Model):
    """Durable saga state for a redemption whose coins have been debited.

    Created in the same transaction as the debit and deleted once the
    subscription service has confirmed the extension.
    """

    class Stage(models.TextChoices):
        DEBITED = "debited", "Debited"
        EXTEND_REQUESTED = "extend_requested", "Extension requested"
        EXTENDED = "extended", "Extended"

    id = models.BigAutoField(primary_key=True)
    fingerprint = models.CharField(
        max_length=64,
        unique=True,
        help_text="SHA256 of user id, days and the caller's request id.",
    )
    request_id = models.CharField(
        max_length=255,
        help_text="Caller-supplied (or generated) nonce the fingerprint was derived from.",
    )
    account = models.ForeignKey(
        PlayerAccount,
        on_delete=models.PROTECT,
        related_name="pending_redemptions",
    )
    user_id = models.BigIntegerField()
    days = models.PositiveIntegerField()
    coins_required = models.PositiveIntegerField()
    balance_after = models.IntegerField(
        help_text="Balance right after the debit; reported back on completion.",
    )
    stage = models.CharField(
        max_length=20,
        choices=Stage.choices,
        default=Stage.DEBITED,
    )
    attempts = models.PositiveIntegerField(
        default=0,
        help_text="Number of extension calls that failed for this redemption.",
    )
    last_error = models.TextField(blank=True)
    subscription_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Expiry returned by the subscription service once extended.",
    )
    flagged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the record was surfaced for manual reconciliation.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "rewards_pending_redemption"
        verbose_name = "Pending redemption"
        verbose_name_plural = "Pending redemptions"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["stage", "created_at"], name="pending_redemption_stage_idx"),
            models.Index(fields=["user_id"], name="pending_redemption_user_idx"),
        ]

    def __str__(self):
        return f"PendingRedemption<{self.fingerprint[:12]}:{self.stage}>"
