"""Reward ledger API views."""

from .accounts import AccountDetailView, AccountLedgerEntryListView
from .redemption import PendingRedemptionDetailView, RedeemView

__all__ = [
    "AccountDetailView",
    "AccountLedgerEntryListView",
    "PendingRedemptionDetailView",
    "RedeemView",
]
