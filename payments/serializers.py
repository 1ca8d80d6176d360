"""DRF serializers for payments and webhook deliveries."""

from decimal import Decimal

from common.choices import CancelReason, GatewayName, PaymentMethod, RefundReason
from rest_framework import serializers

from .models import Payment, PaymentRefund


class PaymentRefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentRefund
        fields = ["id", "amount", "reason", "gateway_refund_id", "source", "created_at"]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    """Public view of a payment. Raw gateway responses stay server-side."""

    refundable_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    refunds = PaymentRefundSerializer(many=True, read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "order",
            "amount",
            "currency",
            "status",
            "gateway",
            "method",
            "transaction_id",
            "gateway_reference",
            "approval_number",
            "payment_url",
            "session_data",
            "expires_at",
            "error_code",
            "error_message",
            "processed_at",
            "refunded_amount",
            "refundable_amount",
            "refunds",
            "metadata",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class PaymentInitiateSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)
    gateway = serializers.ChoiceField(choices=GatewayName.choices)
    method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_blank=True, default="")
    return_url = serializers.URLField(required=False, allow_blank=True, default="")
    cancel_url = serializers.URLField(required=False, allow_blank=True, default="")
    metadata = serializers.DictField(required=False, default=dict)


class PaymentConfirmSerializer(serializers.Serializer):
    """``data`` carries whatever the provider handed back to the client.

    e.g. ``paymentKey`` for TossPayments, ``authToken``/``authUrl`` for
    Inicis, ``enc_data``/``enc_info``/``tran_cd`` for KCP.
    """

    transaction_id = serializers.CharField(max_length=128, required=False, allow_blank=True, default="")
    data = serializers.DictField(required=False, default=dict)


class PaymentCancelSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=CancelReason.choices, required=False, default=CancelReason.CUSTOMER_REQUEST)
    note = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")


class PaymentRefundRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal("0.01"), required=False, allow_null=True, default=None
    )
    reason = serializers.ChoiceField(choices=RefundReason.choices, required=False, default=RefundReason.CUSTOMER_REQUEST)


class GatewaySerializer(serializers.Serializer):
    name = serializers.CharField()
    methods = serializers.ListField(child=serializers.CharField())
    currencies = serializers.ListField(child=serializers.CharField())


class WebhookResultSerializer(serializers.Serializer):
    outcome = serializers.CharField()
    kind = serializers.CharField()
    payment_id = serializers.IntegerField(allow_null=True)
