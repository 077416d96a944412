"""Pagination for ledger history."""
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination


class LedgerHistoryPagination(PageNumberPagination):
    """Page through a player's ledger entries, newest first.

    Each page also carries the account's current balance so clients can
    reconcile ``balance_after`` values without a second request.
    """

    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 500
    account = None

    def paginate_queryset(self, queryset, request, view=None):
        self.account = getattr(view, "account", None)
        return super().paginate_queryset(queryset, request, view=view)

    def get_paginated_response(self, data):
        response = super().get_paginated_response(data)
        if self.account is not None:
            response.data["user_id"] = self.account.user_id
            response.data["balance"] = self.account.balance
        return response

    def get_paginated_response_schema(self, schema):
        schema = super().get_paginated_response_schema(schema)
        schema["properties"]["user_id"] = {"type": "integer"}
        schema["properties"]["balance"] = {"type": "integer"}
        return schema
