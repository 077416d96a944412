import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PlayerAccount",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "user_id",
                    models.BigIntegerField(
                        help_text="Stable external identifier of the player (e.g. Telegram id)",
                        unique=True,
                    ),
                ),
                (
                    "balance",
                    models.IntegerField(
                        default=0,
                        help_text="Current coin balance",
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "plan",
                    models.CharField(
                        default="basic",
                        help_text="Subscription tier forwarded to the subscription service",
                        max_length=64,
                    ),
                ),
                (
                    "subscription_end",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last expiry confirmed by the subscription service",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Player account",
                "verbose_name_plural": "Player accounts",
                "db_table": "rewards_player_account",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=Q(balance__gte=0),
                        name="player_account_balance_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "amount",
                    models.IntegerField(
                        help_text="Signed coin amount; positive for credits, negative for debits",
                    ),
                ),
                (
                    "type",
                    models.CharField(
                        choices=[
                            ("REDEMPTION", "Redemption"),
                            ("ADJUSTMENT", "Adjustment"),
                            ("REFUND", "Refund"),
                        ],
                        help_text="Categorisation of the coin movement",
                        max_length=20,
                    ),
                ),
                (
                    "balance_after",
                    models.IntegerField(
                        help_text="Account balance immediately after this entry was applied",
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Unique key to guarantee idempotent entry writes",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("description", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "account",
                    models.ForeignKey(
                        help_text="Account affected by this entry",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="entries",
                        to="rewards.playeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name": "Ledger entry",
                "verbose_name_plural": "Ledger entries",
                "db_table": "rewards_ledger_entry",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(condition=~Q(amount=0), name="ledger_entry_non_zero"),
                    models.UniqueConstraint(
                        condition=Q(idempotency_key__isnull=False),
                        fields=("idempotency_key",),
                        name="unique_ledger_entry_idempotency_key",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PendingRedemption",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "fingerprint",
                    models.CharField(
                        help_text="SHA256 of user id, days and the caller's request id.",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "request_id",
                    models.CharField(
                        help_text="Caller-supplied (or generated) nonce the fingerprint was derived from.",
                        max_length=255,
                    ),
                ),
                ("user_id", models.BigIntegerField()),
                ("days", models.PositiveIntegerField()),
                ("coins_required", models.PositiveIntegerField()),
                (
                    "balance_after",
                    models.IntegerField(
                        help_text="Balance right after the debit; reported back on completion.",
                    ),
                ),
                (
                    "stage",
                    models.CharField(
                        choices=[
                            ("debited", "Debited"),
                            ("extend_requested", "Extension requested"),
                            ("extended", "Extended"),
                        ],
                        default="debited",
                        max_length=20,
                    ),
                ),
                (
                    "attempts",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Number of extension calls that failed for this redemption.",
                    ),
                ),
                ("last_error", models.TextField(blank=True)),
                (
                    "subscription_end",
                    models.DateTimeField(
                        blank=True,
                        help_text="Expiry returned by the subscription service once extended.",
                        null=True,
                    ),
                ),
                (
                    "flagged_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the record was surfaced for manual reconciliation.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "account",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="pending_redemptions",
                        to="rewards.playeraccount",
                    ),
                ),
            ],
            options={
                "verbose_name": "Pending redemption",
                "verbose_name_plural": "Pending redemptions",
                "db_table": "rewards_pending_redemption",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["stage", "created_at"], name="pending_redemption_stage_idx"),
                    models.Index(fields=["user_id"], name="pending_redemption_user_idx"),
                ],
            },
        ),
    ]
