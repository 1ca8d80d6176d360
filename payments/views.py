"""Payment endpoints and the provider webhook receiver."""

from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .apps import get_registry
from .filters import PaymentFilterSet
from .models import Payment
from .serializers import (
    GatewaySerializer,
    PaymentCancelSerializer,
    PaymentConfirmSerializer,
    PaymentInitiateSerializer,
    PaymentRefundRequestSerializer,
    PaymentSerializer,
    WebhookResultSerializer,
)
from .webhooks import WebhookReconciler

SIGNATURE_HEADERS = ("Stripe-Signature", "TossPayments-Signature", "X-Signature", "PayPal-Transmission-Sig")


class PaymentListView(generics.ListAPIView):
    """List payments.

    Filters: `order`, `status`, `gateway`, `method`, `transaction_id`,
    `created_after`, `created_before`. Ordering: `created_at`, `amount`.
    """

    serializer_class = PaymentSerializer
    filterset_class = PaymentFilterSet
    ordering_fields = ["created_at", "amount"]
    throttle_scope = "payments"

    def get_queryset(self):
        return Payment.objects.prefetch_related("refunds").order_by("-created_at", "-id")

    @extend_schema(tags=["Payments"], summary="List payments")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class PaymentInitiateView(APIView):
    throttle_scope = "payments_write"

    @extend_schema(
        tags=["Payments"],
        summary="Initiate payment",
        description=(
            "Creates a pending payment for the order and opens a session with the gateway. "
            "The response carries either a `payment_url` to redirect to or `session_data` for the provider widget."
        ),
        request=PaymentInitiateSerializer,
        responses={201: PaymentSerializer},
        examples=[
            OpenApiExample(
                "TossPayments",
                value={"order_id": 12, "gateway": "toss_payments", "return_url": "https://shop.example.com/pay/ok"},
                request_only=True,
            ),
            OpenApiExample(
                "Duplicate",
                value={"error": "duplicate_payment", "detail": "Order 12 already has payment 40 in status pending"},
                response_only=True,
                status_codes=["409"],
            ),
        ],
    )
    def post(self, request):
        ser = PaymentInitiateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        payment = services.initiate_payment(**ser.validated_data)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    throttle_scope = "payments"

    @extend_schema(tags=["Payments"], summary="Get payment", responses={200: PaymentSerializer})
    def get(self, request, payment_id: int):
        return Response(PaymentSerializer(services.get_payment(payment_id)).data)


class PaymentConfirmView(APIView):
    throttle_scope = "payments_write"

    @extend_schema(
        tags=["Payments"],
        summary="Confirm payment",
        description=(
            "Finalizes the payment with its gateway. A declined confirmation returns 200 with status `failed`; "
            "the order is left as it was."
        ),
        request=PaymentConfirmSerializer,
        responses={200: PaymentSerializer},
        examples=[
            OpenApiExample(
                "TossPayments",
                value={"transaction_id": "tgen_20250101abcd", "data": {"paymentKey": "tgen_20250101abcd"}},
                request_only=True,
            )
        ],
    )
    def post(self, request, payment_id: int):
        ser = PaymentConfirmSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        payment = services.confirm_payment(
            payment_id,
            transaction_id=ser.validated_data["transaction_id"],
            data=ser.validated_data["data"],
        )
        return Response(PaymentSerializer(payment).data)


class PaymentCancelView(APIView):
    throttle_scope = "payments_write"

    @extend_schema(
        tags=["Payments"],
        summary="Cancel payment",
        request=PaymentCancelSerializer,
        responses={200: PaymentSerializer},
    )
    def post(self, request, payment_id: int):
        ser = PaymentCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        reason = ser.validated_data["reason"]
        if ser.validated_data["note"]:
            reason = f"{reason}: {ser.validated_data['note']}"
        payment = services.cancel_payment(payment_id, reason)
        return Response(PaymentSerializer(payment).data)


class PaymentRefundView(APIView):
    throttle_scope = "payments_write"

    @extend_schema(
        tags=["Payments"],
        summary="Refund payment",
        description="Refunds `amount` (default: the remaining refundable balance).",
        request=PaymentRefundRequestSerializer,
        responses={200: PaymentSerializer},
        examples=[
            OpenApiExample("Partial", value={"amount": "3000.00", "reason": "product_issue"}, request_only=True),
            OpenApiExample(
                "Too much",
                value={"error": "refund_exceeds_captured_amount", "detail": "Refund of 8000.00 exceeds ..."},
                response_only=True,
                status_codes=["400"],
            ),
        ],
    )
    def post(self, request, payment_id: int):
        ser = PaymentRefundRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        payment = services.refund_payment(payment_id, ser.validated_data["amount"], ser.validated_data["reason"])
        return Response(PaymentSerializer(payment).data)


class PaymentReceiptView(APIView):
    throttle_scope = "payments"

    @extend_schema(tags=["Payments"], summary="Payment receipt")
    def get(self, request, payment_id: int):
        receipt = services.generate_receipt(payment_id)
        return Response(receipt.as_dict())


class GatewayListView(APIView):
    throttle_scope = "payments"

    @extend_schema(tags=["Payments"], summary="Configured gateways", responses={200: GatewaySerializer(many=True)})
    def get(self, request):
        registry = get_registry()
        data = [
            {
                "name": name,
                "methods": registry.get(name).supported_methods(),
                "currencies": registry.get(name).supported_currencies(),
            }
            for name in registry.supported()
        ]
        return Response(GatewaySerializer(data, many=True).data)


class WebhookView(APIView):
    """Inbound provider callbacks. Always answers 200 once the delivery is recorded."""

    authentication_classes = []
    throttle_scope = "webhooks"

    @extend_schema(
        tags=["Webhooks"],
        summary="Provider webhook",
        request=None,
        responses={200: WebhookResultSerializer},
        parameters=[
            OpenApiParameter("event", str, location="query", required=False, description="Event name override"),
        ],
    )
    def post(self, request, gateway: str):
        raw_body = request.body
        payload = request.data
        if hasattr(payload, "dict"):
            payload = payload.dict()
        elif not isinstance(payload, dict):
            payload = {"data": payload}
        signature = next((request.headers[h] for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
        event = request.query_params.get("event") or request.headers.get("X-Event-Type", "")

        result = WebhookReconciler().process(gateway, event, payload, signature=signature, raw_body=raw_body)
        return Response({"outcome": result.outcome, "kind": result.kind, "payment_id": result.payment_id})
