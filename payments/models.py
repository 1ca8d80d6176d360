from decimal import Decimal

from common.choices import GatewayName, PaymentMethod, PaymentStatus
from django.db import models


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.COMPLETED: {
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
    PaymentStatus.PARTIALLY_REFUNDED: {
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}


class Payment(TimeStampedModel):
    """A single attempt to collect an order's total through one gateway.

    ``gateway_reference`` is the provider-assigned key known before
    confirmation (PaymentIntent id, Toss orderId, Inicis oid, ...);
    ``transaction_id`` is the captured transaction once confirmed. Webhook
    lookups match on either.
    """

    STATUS_PENDING = PaymentStatus.PENDING
    STATUS_PROCESSING = PaymentStatus.PROCESSING
    STATUS_COMPLETED = PaymentStatus.COMPLETED
    STATUS_FAILED = PaymentStatus.FAILED
    STATUS_CANCELLED = PaymentStatus.CANCELLED
    STATUS_REFUNDED = PaymentStatus.REFUNDED
    STATUS_PARTIALLY_REFUNDED = PaymentStatus.PARTIALLY_REFUNDED

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)
    REFUNDABLE_STATUSES = (STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED)

    order = models.ForeignKey("orders.Order", related_name="payments", on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=STATUS_PENDING, db_index=True
    )
    gateway = models.CharField(max_length=20, choices=GatewayName.choices)
    method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CARD)
    transaction_id = models.CharField(max_length=128, blank=True, db_index=True)
    gateway_reference = models.CharField(max_length=128, blank=True, db_index=True)
    approval_number = models.CharField(max_length=64, blank=True)
    session_data = models.JSONField(default=dict, blank=True)
    payment_url = models.URLField(max_length=500, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    gateway_response = models.JSONField(default=dict, blank=True)
    error_code = models.CharField(max_length=64, blank=True)
    error_message = models.CharField(max_length=500, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    refunded_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["gateway", "status"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status__in=["pending", "processing"]),
                name="payment_one_active_per_order",
            ),
            models.CheckConstraint(name="payment_amount_positive", condition=models.Q(amount__gt=0)),
            models.CheckConstraint(
                name="payment_refund_within_amount",
                condition=models.Q(refunded_amount__gte=0) & models.Q(refunded_amount__lte=models.F("amount")),
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Payment#{self.id} order={self.order_id} {self.gateway} {self.status}"

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - (self.refunded_amount or Decimal("0.00"))

    @property
    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    def can_transition_to(self, status: str) -> bool:
        return status in ALLOWED_TRANSITIONS.get(self.status, set())


class PaymentRefund(models.Model):
    """One successful refund against a payment, synchronous or webhook-reported."""

    SOURCE_API = "api"
    SOURCE_WEBHOOK = "webhook"
    SOURCE_CHOICES = [(SOURCE_API, "API"), (SOURCE_WEBHOOK, "Webhook")]

    payment = models.ForeignKey(Payment, related_name="refunds", on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    reason = models.CharField(max_length=255, blank=True)
    gateway_refund_id = models.CharField(max_length=128, blank=True)
    source = models.CharField(max_length=16, choices=SOURCE_CHOICES, default=SOURCE_API)
    raw_response = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["payment", "gateway_refund_id"],
                condition=~models.Q(gateway_refund_id=""),
                name="refund_unique_gateway_id",
            ),
            models.CheckConstraint(name="refund_amount_positive", condition=models.Q(amount__gt=0)),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Refund#{self.id} payment={self.payment_id} amount={self.amount}"


class WebhookDelivery(models.Model):
    """Raw audit record of every inbound provider callback."""

    OUTCOME_PROCESSED = "processed"
    OUTCOME_DUPLICATE = "duplicate"
    OUTCOME_UNRESOLVED = "unresolved"
    OUTCOME_IGNORED = "ignored"
    OUTCOME_REJECTED = "rejected"
    OUTCOME_CHOICES = [
        (OUTCOME_PROCESSED, "Processed"),
        (OUTCOME_DUPLICATE, "Duplicate"),
        (OUTCOME_UNRESOLVED, "Unresolved"),
        (OUTCOME_IGNORED, "Ignored"),
        (OUTCOME_REJECTED, "Rejected"),
    ]

    gateway = models.CharField(max_length=20)
    event = models.CharField(max_length=100, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    signature_present = models.BooleanField(default=False)
    outcome = models.CharField(max_length=16, choices=OUTCOME_CHOICES, db_index=True)
    payment = models.ForeignKey(
        Payment, related_name="webhook_deliveries", null=True, blank=True, on_delete=models.SET_NULL
    )
    detail = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name_plural = "webhook deliveries"

    def __str__(self) -> str:  # pragma: no cover
        return f"Webhook#{self.id} {self.gateway}:{self.event} {self.outcome}"
