"""Redemption endpoints: run the saga and inspect pending records."""
from __future__ import annotations

from django.conf import settings
from rest_framework.response import Response
from rest_framework.views import APIView

from rewards.models import PendingRedemption
from rewards.observability.metrics import REWARDS_REQUEST_LATENCY
from rewards.serializers import PendingRedemptionSerializer, RedemptionRequestSerializer
from rewards.services import RedemptionCoordinator, Rejected, RejectionReason
from rewards.views.mixins import RewardsMetricsMixin


def _first_error(errors) -> str:
    for field, messages in errors.items():
        if isinstance(messages, (list, tuple)) and messages:
            return f"{field}: {messages[0]}"
        return f"{field}: {messages}"
    return "Invalid request."


class RedeemView(RewardsMetricsMixin, APIView):
    """Exchange coins for subscription days.

    Retrying with the same ``request_id`` (or ``Idempotency-Key`` header) never
    debits twice; it resumes the pending redemption instead.
    """

    endpoint_label = "redeem"
    method = "POST"
    coordinator_class = RedemptionCoordinator

    def get_coordinator(self) -> RedemptionCoordinator:
        return self.coordinator_class()

    def post(self, request):
        with REWARDS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            if not getattr(settings, "REWARDS_API_WRITE_ENABLED", True):
                return self._error_response(
                    status=503,
                    code="rewards_writes_disabled",
                    message="Redemptions are temporarily disabled.",
                )

            serializer = RedemptionRequestSerializer(
                data=request.data,
                context={"request": request, "idempotency_key": request.headers.get("Idempotency-Key")},
            )
            if not serializer.is_valid():
                outcome = Rejected(
                    reason=RejectionReason.INVALID_REQUEST,
                    detail=_first_error(serializer.errors),
                )
            else:
                data = serializer.validated_data
                outcome = self.get_coordinator().redeem(
                    data["user_id"],
                    data["days"],
                    data.get("request_id"),
                )

            self._record_request(outcome.http_status)
            return Response(outcome.to_payload(), status=outcome.http_status)


class PendingRedemptionDetailView(RewardsMetricsMixin, APIView):
    """Expose the saga state of a redemption that has not completed yet."""

    endpoint_label = "redemptions.detail"

    def get(self, request, fingerprint):
        record = PendingRedemption.objects.filter(fingerprint=fingerprint).first()
        if record is None:
            return self._error_response(
                status=404,
                code="redemption_not_pending",
                message="No pending redemption with this fingerprint.",
                details={"fingerprint": fingerprint},
            )
        self._record_request(200)
        return Response(PendingRedemptionSerializer(record).data)
