"""DRF serializers for redemption requests and ledger read models."""
from __future__ import annotations

from typing import Any, Dict

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from rewards.models import LedgerEntry, PendingRedemption, PlayerAccount

REDEMPTION_MAX_DAYS = 3650


class RedemptionRequestSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    days = serializers.IntegerField(min_value=1, max_value=REDEMPTION_MAX_DAYS)
    request_id = serializers.CharField(max_length=255, required=False, allow_blank=False, trim_whitespace=True)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs = super().validate(attrs)
        if attrs.get("request_id") is None:
            header_key = self.context.get("idempotency_key")
            if header_key:
                if len(header_key) > 255:
                    raise serializers.ValidationError({"request_id": [_("Idempotency-Key is too long.")]})
                attrs["request_id"] = header_key
        return attrs


class PlayerAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = PlayerAccount
        fields = ("user_id", "balance", "plan", "subscription_end", "updated_at")
        read_only_fields = fields


class LedgerEntrySerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(source="account.user_id", read_only=True)

    class Meta:
        model = LedgerEntry
        fields = (
            "id",
            "user_id",
            "amount",
            "type",
            "balance_after",
            "description",
            "metadata",
            "created_at",
        )
        read_only_fields = fields


class PendingRedemptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PendingRedemption
        fields = (
            "fingerprint",
            "request_id",
            "user_id",
            "days",
            "coins_required",
            "balance_after",
            "stage",
            "attempts",
            "last_error",
            "subscription_end",
            "flagged_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
