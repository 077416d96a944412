"""FilterSet definitions for reward ledger endpoints."""
from __future__ import annotations

import django_filters

from rewards.models import LedgerEntry


class LedgerEntryFilter(django_filters.FilterSet):
    type = django_filters.CharFilter(field_name="type", lookup_expr="iexact")
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = LedgerEntry
        fields = ["type"]
