"""
Payment admin configuration.

Ledger rows are read-only here: status changes go through the services.
The only write paths are the payout hold / release / retry actions, which
call PayoutAdminService.
"""

from django.contrib import admin, messages

from payments.models import CoachInvoice, ConnectedAccount, Payment, Transaction, WebhookEvent
from payments.services import PayoutAdminService
from payments.workers import process_single_payout

__all__ = [
    "CoachInvoiceAdmin",
    "ConnectedAccountAdmin",
    "PaymentAdmin",
    "TransactionAdmin",
    "WebhookEventAdmin",
]


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """Coach Stripe Connect accounts and their tax registration."""

    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "onboarding_status",
        "payouts_enabled",
        "is_tax_registered",
        "tax_rate",
        "created_at",
    ]
    list_filter = ["onboarding_status", "payouts_enabled", "is_tax_registered"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    readonly_fields = ["id", "created_at", "updated_at", "version"]
    ordering = ["-created_at"]


class TransactionInline(admin.TabularInline):
    model = Transaction
    fk_name = "payment"
    extra = 0
    readonly_fields = [
        "id",
        "transaction_type",
        "amount",
        "currency",
        "status",
        "stripe_transfer_id",
        "stripe_refund_id",
        "created_at",
    ]
    fields = readonly_fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Payments, adjustments and their payout state.

    Payout actions only apply to rows in the action's source status; the
    rest are reported back as skipped.
    """

    list_display = [
        "id",
        "payment_type",
        "recipient",
        "amount_display",
        "status",
        "payout_status",
        "payout_attempts",
        "next_payout_attempt_at",
        "created_at",
    ]
    list_filter = ["status", "payout_status", "payment_type", "currency"]
    search_fields = [
        "id",
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "stripe_transfer_id",
        "recipient__email",
        "payer__email",
    ]
    readonly_fields = [field.name for field in Payment._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [TransactionInline]
    actions = ["hold_payouts", "release_payouts", "retry_payouts"]

    fieldsets = (
        (None, {"fields": ("id", "payment_type", "payer", "recipient", "status", "description")}),
        (
            "Amounts",
            {
                "fields": (
                    "total_amount",
                    "base_amount",
                    "platform_fee",
                    "vat_rate",
                    "vat_amount",
                    "captured_amount",
                    "refunded_amount",
                    "currency",
                ),
            },
        ),
        (
            "Payout",
            {
                "fields": (
                    "payout_status",
                    "payout_attempts",
                    "next_payout_attempt_at",
                    "payout_locked_at",
                    "payout_processed_at",
                    "payout_failure_reason",
                    "stripe_transfer_id",
                ),
            },
        ),
        (
            "Stripe",
            {"fields": ("stripe_payment_intent_id", "stripe_charge_id"), "classes": ("collapse",)},
        ),
        (
            "Adjustments & Refunds",
            {"fields": ("original_payment", "absorbed_by", "refunds"), "classes": ("collapse",)},
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("completed_at", "created_at", "updated_at")}),
    )

    def amount_display(self, obj: Payment) -> str:
        return f"{obj.total_amount:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def _run_action(self, request, queryset, action, verb: str) -> list:
        done = []
        for payment_id in queryset.values_list("pk", flat=True):
            result = action(payment_id)
            if result.success:
                done.append(payment_id)
            else:
                self.message_user(request, f"{payment_id}: {result.error}", level=messages.WARNING)
        self.message_user(request, f"{verb} {len(done)} payout(s).")
        return done

    @admin.action(description="Put selected payouts on hold")
    def hold_payouts(self, request, queryset):
        self._run_action(
            request,
            queryset,
            lambda pk: PayoutAdminService.hold(pk, reason=f"held by {request.user}"),
            "Held",
        )

    @admin.action(description="Release selected payouts from hold")
    def release_payouts(self, request, queryset):
        self._run_action(request, queryset, PayoutAdminService.release, "Released")

    @admin.action(description="Retry selected failed payouts now")
    def retry_payouts(self, request, queryset):
        for payment_id in self._run_action(request, queryset, PayoutAdminService.retry, "Re-queued"):
            process_single_payout.delay(str(payment_id))

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Payments are part of the audit trail."""
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ["id", "payment", "transaction_type", "amount", "currency", "status", "created_at"]
    list_filter = ["transaction_type", "status", "currency"]
    search_fields = [
        "id",
        "payment__id",
        "stripe_charge_id",
        "stripe_transfer_id",
        "stripe_refund_id",
        "stripe_reversal_id",
    ]
    readonly_fields = [field.name for field in Transaction._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(CoachInvoice)
class CoachInvoiceAdmin(admin.ModelAdmin):
    list_display = ["id", "kind", "recipient", "payment", "gross_amount", "net_amount", "withheld_tax", "created_at"]
    list_filter = ["kind", "currency"]
    search_fields = ["id", "payment__id", "recipient__email", "stripe_refund_id"]
    readonly_fields = [field.name for field in CoachInvoice._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Received Stripe events. Payloads are immutable."""

    list_display = ["id", "stripe_event_id", "event_type", "status", "retry_count", "processed_at", "created_at"]
    list_filter = ["status", "event_type"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = ["id", "stripe_event_id", "event_type", "payload", "processed_at", "created_at", "updated_at"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
