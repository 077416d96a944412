"""URL routes for reward ledger endpoints."""
from django.urls import path

from .views import (
    AccountDetailView,
    AccountLedgerEntryListView,
    PendingRedemptionDetailView,
    RedeemView,
)

app_name = "rewards"

urlpatterns = [
    path("redeem/", RedeemView.as_view(), name="redeem"),
    path(
        "redemptions/<str:fingerprint>/",
        PendingRedemptionDetailView.as_view(),
        name="redemption-detail",
    ),
    path("accounts/<int:user_id>/", AccountDetailView.as_view(), name="account-detail"),
    path(
        "accounts/<int:user_id>/entries/",
        AccountLedgerEntryListView.as_view(),
        name="account-entries",
    ),
]
