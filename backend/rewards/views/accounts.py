"""Read-only ledger account endpoints."""
from __future__ import annotations

from rest_framework.generics import ListAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from rewards.filters import LedgerEntryFilter
from rewards.models import LedgerEntry, PlayerAccount
from rewards.observability.metrics import REWARDS_REQUEST_LATENCY
from rewards.pagination import LedgerHistoryPagination
from rewards.serializers import LedgerEntrySerializer, PlayerAccountSerializer
from rewards.views.mixins import RewardsMetricsMixin


def _account_not_found(view: RewardsMetricsMixin, user_id: int) -> Response:
    return view._error_response(
        status=404,
        code="account_not_found",
        message="User not found.",
        user_id=user_id,
    )


class AccountDetailView(RewardsMetricsMixin, APIView):
    endpoint_label = "accounts.detail"

    def get(self, request, user_id):
        account = PlayerAccount.objects.filter(user_id=user_id).first()
        if account is None:
            return _account_not_found(self, user_id)
        self._record_request(200)
        return Response(PlayerAccountSerializer(account).data)


class AccountLedgerEntryListView(RewardsMetricsMixin, ListAPIView):
    """Paginated ledger history for one player, newest first."""

    endpoint_label = "accounts.entries"
    serializer_class = LedgerEntrySerializer
    pagination_class = LedgerHistoryPagination
    filterset_class = LedgerEntryFilter
    ordering_fields = ("created_at", "amount", "type")
    ordering = ("-created_at",)

    account = None

    def list(self, request, *args, **kwargs):
        with REWARDS_REQUEST_LATENCY.labels(endpoint=self.endpoint_label, method=self.method).time():
            user_id = self.kwargs["user_id"]
            self.account = PlayerAccount.objects.filter(user_id=user_id).first()
            if self.account is None:
                return _account_not_found(self, user_id)
            response = super().list(request, *args, **kwargs)
            self._record_request(response.status_code)
            return response

    def get_queryset(self):
        return (
            LedgerEntry.objects.select_related("account")
            .filter(account=self.account)
            .order_by("-created_at")
        )
