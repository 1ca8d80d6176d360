"""Payments admin. Status only changes through the payment services, so rows are read-only here."""

from django.contrib import admin

from .models import Payment, PaymentRefund, WebhookDelivery


class PaymentRefundInline(admin.TabularInline):
    model = PaymentRefund
    extra = 0
    can_delete = False
    readonly_fields = ("amount", "reason", "gateway_refund_id", "source", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "gateway", "status", "amount", "refunded_amount", "currency", "created_at")
    list_filter = ("gateway", "status", "method")
    search_fields = ("transaction_id", "gateway_reference", "order__number")
    inlines = [PaymentRefundInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(WebhookDelivery)
class WebhookDeliveryAdmin(admin.ModelAdmin):
    list_display = ("id", "gateway", "event", "outcome", "payment", "signature_present", "created_at")
    list_filter = ("gateway", "outcome")
    search_fields = ("event", "detail")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


# EOF
