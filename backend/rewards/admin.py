from django.contrib import admin

from .models import LedgerEntry, PendingRedemption, PlayerAccount


@admin.register(PlayerAccount)
class PlayerAccountAdmin(admin.ModelAdmin):
    """Expose player balances and the last confirmed subscription expiry."""

    list_display = ("id", "user_id", "balance", "plan", "subscription_end", "updated_at")
    search_fields = ("user_id",)
    list_filter = ("plan", "created_at")
    readonly_fields = ("balance", "subscription_end", "created_at", "updated_at")
    ordering = ("-created_at",)

    fieldsets = (
        ("Player", {"fields": ("user_id", "plan")}),
        ("Balance", {"fields": ("balance", "subscription_end")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """Read-only audit trail for coin movements."""

    list_display = ("id", "account", "type", "amount", "balance_after", "created_at", "idempotency_key")
    search_fields = ("id", "account__user_id", "idempotency_key")
    list_filter = ("type", "created_at")
    ordering = ("-created_at",)
    list_select_related = ("account",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PendingRedemption)
class PendingRedemptionAdmin(admin.ModelAdmin):
    """Redemptions whose coins are debited but whose extension is not confirmed."""

    list_display = (
        "fingerprint",
        "user_id",
        "days",
        "coins_required",
        "stage",
        "attempts",
        "flagged_at",
        "created_at",
    )
    search_fields = ("fingerprint", "request_id", "user_id")
    list_filter = ("stage", "flagged_at", "created_at")
    readonly_fields = (
        "fingerprint",
        "request_id",
        "account",
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
    ordering = ("created_at",)

    def has_add_permission(self, request):
        return False
