"""Payment orchestration: initiate, confirm, cancel and refund.

Gateway round trips always happen outside a database transaction. The
state change that follows is applied by one of the transition functions
(``complete_payment``, ``fail_payment``, ``cancel_payment_record``,
``apply_refund``, ``record_chargeback``). Each locks the payment row,
re-checks its status and writes payment, order and history rows together.
The webhook reconciler calls the same functions, so the synchronous and
asynchronous paths cannot end in different states.

Transition functions return ``(payment, changed)``; ``changed`` is False
when the payment was already in (or past) the target state.
"""

import logging
from decimal import Decimal, InvalidOperation

from common.exceptions import (
    DuplicatePaymentError,
    GatewayDeclinedError,
    GatewayError,
    InvalidPaymentStateError,
    NotFoundError,
    RefundExceedsCapturedAmountError,
    ValidationError,
)
from django.db import IntegrityError, transaction
from django.utils import timezone
from inventory.services import release
from orders.models import Order
from orders.services import (
    append_status_history,
    get_order_by_id,
    order_reservation_items,
    update_order_status,
)

from . import signals
from .apps import get_registry
from .gateways.base import PaymentRequest, ReceiptDetails, ReceiptLine, RefundRequest
from .models import Payment, PaymentRefund

logger = logging.getLogger("commerce.payments")

SOURCE_API = PaymentRefund.SOURCE_API
SOURCE_WEBHOOK = PaymentRefund.SOURCE_WEBHOOK

REFUND_RELEASE_REASON = "Order refunded"


def get_payment(payment_id, *, for_update: bool = False) -> Payment:
    qs = Payment.objects.select_for_update() if for_update else Payment.objects.all()
    try:
        return qs.get(pk=payment_id)
    except (Payment.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Payment {payment_id} not found", payment_id=payment_id)


def _emit(signal, payment: Payment, **kwargs) -> None:
    """Send ``signal`` once the surrounding transaction commits."""

    def send():
        for receiver, response in signal.send_robust(sender=Payment, payment=payment, **kwargs):
            if isinstance(response, Exception):
                logger.error(
                    "payment.signal_receiver_failed",
                    extra={"payment_id": payment.pk, "receiver": getattr(receiver, "__name__", repr(receiver))},
                    exc_info=(type(response), response, response.__traceback__),
                )

    transaction.on_commit(send)


def _to_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid amount: {value}")
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


# -- transitions ------------------------------------------------------------


def complete_payment(
    payment_id,
    *,
    transaction_id: str = "",
    approval_number: str = "",
    raw_response: dict | None = None,
    source: str = SOURCE_API,
) -> tuple[Payment, bool]:
    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        if not payment.can_transition_to(Payment.STATUS_COMPLETED):
            return payment, False
        order = get_order_by_id(payment.order_id, for_update=True)
        payment.status = Payment.STATUS_COMPLETED
        payment.transaction_id = transaction_id or payment.transaction_id
        payment.approval_number = approval_number or payment.approval_number
        payment.processed_at = timezone.now()
        payment.error_code = ""
        payment.error_message = ""
        if raw_response is not None:
            payment.gateway_response = raw_response
        payment.save()

        note = f"Payment completed via {payment.get_gateway_display()}"
        if order.status == Order.STATUS_PENDING:
            update_order_status(order, Order.STATUS_CONFIRMED, notes=note)
        elif order.is_payable:
            append_status_history(order, note)
        else:
            append_status_history(order, f"{note} while order was {order.status}")
        _emit(signals.payment_completed, payment, source=source)

    logger.info(
        "payment.completed",
        extra={"payment_id": payment.pk, "order_id": payment.order_id, "gateway": payment.gateway, "source": source},
    )
    return payment, True


def fail_payment(
    payment_id,
    *,
    error_code: str = "",
    error_message: str = "",
    raw_response: dict | None = None,
    source: str = SOURCE_API,
) -> tuple[Payment, bool]:
    """Mark a payment failed. The order's status is left for its owner to decide."""

    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        if not payment.can_transition_to(Payment.STATUS_FAILED):
            return payment, False
        payment.status = Payment.STATUS_FAILED
        payment.error_code = (error_code or "PAYMENT_FAILED")[:64]
        payment.error_message = (error_message or "")[:500]
        payment.processed_at = timezone.now()
        if raw_response is not None:
            payment.gateway_response = raw_response
        payment.save()
        append_status_history(payment.order, f"Payment failed: {payment.error_code}")
        _emit(signals.payment_failed, payment, source=source)

    logger.info(
        "payment.failed",
        extra={"payment_id": payment.pk, "order_id": payment.order_id, "error_code": payment.error_code, "source": source},
    )
    return payment, True


def cancel_payment_record(
    payment_id, *, reason: str = "", raw_response: dict | None = None, source: str = SOURCE_API
) -> tuple[Payment, bool]:
    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        if not payment.can_transition_to(Payment.STATUS_CANCELLED):
            return payment, False
        payment.status = Payment.STATUS_CANCELLED
        payment.processed_at = timezone.now()
        if reason:
            payment.metadata = {**payment.metadata, "cancel_reason": reason}
        if raw_response is not None:
            payment.gateway_response = raw_response
        payment.save()
        append_status_history(payment.order, f"Payment cancelled: {reason}" if reason else "Payment cancelled")
        _emit(signals.payment_cancelled, payment, source=source, reason=reason)

    logger.info("payment.cancelled", extra={"payment_id": payment.pk, "order_id": payment.order_id, "source": source})
    return payment, True


def apply_refund(
    payment_id,
    *,
    amount=None,
    reason: str = "",
    refund_id: str = "",
    raw_response: dict | None = None,
    source: str = SOURCE_API,
) -> tuple[Payment, bool]:
    """Record a refund the gateway has already accepted.

    A refund that brings ``refunded_amount`` up to the captured amount is
    full: the order moves to refunded and its items go back to stock.
    Anything less leaves the order where it is with a history note.
    ``amount=None`` means "whatever is still refundable".
    """

    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        if refund_id and payment.refunds.filter(gateway_refund_id=refund_id).exists():
            return payment, False
        if payment.status not in Payment.REFUNDABLE_STATUSES:
            return payment, False
        amount = payment.refundable_amount if amount is None else _to_amount(amount)
        if amount > payment.refundable_amount:
            raise RefundExceedsCapturedAmountError(
                f"Refund of {amount} exceeds refundable balance {payment.refundable_amount}",
                payment_id=payment.pk,
            )
        PaymentRefund.objects.create(
            payment=payment,
            amount=amount,
            reason=reason[:255],
            gateway_refund_id=refund_id or "",
            source=source,
            raw_response=raw_response or {},
        )
        payment.refunded_amount = payment.refunded_amount + amount
        full = payment.refunded_amount >= payment.amount
        payment.status = Payment.STATUS_REFUNDED if full else Payment.STATUS_PARTIALLY_REFUNDED
        payment.save(update_fields=["refunded_amount", "status", "updated_at"])

        order = get_order_by_id(payment.order_id, for_update=True)
        if full:
            items = order_reservation_items(order)
            if items:
                release(items=items, order_id=order.id, reason=REFUND_RELEASE_REASON)
            update_order_status(order, Order.STATUS_REFUNDED, notes=f"Payment refunded: {amount} {payment.currency}")
        else:
            append_status_history(order, f"Partial refund: {amount} {payment.currency}")
        _emit(signals.payment_refunded, payment, source=source, amount=amount, full=full)

    logger.info(
        "payment.refunded",
        extra={
            "payment_id": payment.pk,
            "order_id": payment.order_id,
            "amount": str(amount),
            "full": full,
            "source": source,
        },
    )
    return payment, True


def record_chargeback(
    payment_id, *, dispute_id: str = "", reason: str = "", source: str = SOURCE_WEBHOOK
) -> tuple[Payment, bool]:
    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        disputes = list(payment.metadata.get("chargebacks", []))
        if dispute_id and dispute_id in disputes:
            return payment, False
        disputes.append(dispute_id or f"chargeback-{len(disputes) + 1}")
        payment.metadata = {**payment.metadata, "chargebacks": disputes}
        payment.save(update_fields=["metadata", "updated_at"])
        append_status_history(payment.order, f"Chargeback initiated: {reason or 'unspecified'}")
        _emit(signals.chargeback_created, payment, source=source, reason=reason)

    logger.warning(
        "payment.chargeback", extra={"payment_id": payment.pk, "order_id": payment.order_id, "reason": reason}
    )
    return payment, True


def record_recurring_payment(payment_id, *, invoice_id: str = "") -> tuple[Payment, bool]:
    """Note a renewal charge against the subscription's original payment."""

    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        invoices = list(payment.metadata.get("recurring_invoices", []))
        if invoice_id and invoice_id in invoices:
            return payment, False
        invoices.append(invoice_id or f"renewal-{len(invoices) + 1}")
        payment.metadata = {**payment.metadata, "recurring_invoices": invoices}
        payment.save(update_fields=["metadata", "updated_at"])
        append_status_history(payment.order, f"Recurring payment received: {invoices[-1]}")

    logger.info("payment.recurring", extra={"payment_id": payment.pk, "invoice_id": invoice_id})
    return payment, True


# -- orchestrator entry points ------------------------------------------------


def initiate_payment(
    *,
    order_id,
    gateway: str,
    return_url: str = "",
    cancel_url: str = "",
    method: str = "",
    metadata: dict | None = None,
    registry=None,
) -> Payment:
    """Create a pending payment for an order and open a session with the gateway.

    An order can have one pending/processing payment at a time, and none once
    it has been paid. If the gateway rejects the session the payment is
    marked failed so the order can be retried.
    """

    adapter = (registry or get_registry()).get(gateway)
    metadata = dict(metadata or {})

    with transaction.atomic():
        order = get_order_by_id(order_id, for_update=True)
        if not order.is_payable:
            raise ValidationError(f"Order {order.id} in status {order.status} cannot be paid", order_id=order.id)
        if order.total <= 0:
            raise ValidationError(f"Order {order.id} has nothing to pay", order_id=order.id)
        busy = order.payments.filter(
            status__in=Payment.ACTIVE_STATUSES + Payment.REFUNDABLE_STATUSES + (Payment.STATUS_REFUNDED,)
        ).first()
        if busy is not None:
            raise DuplicatePaymentError(
                f"Order {order.id} already has payment {busy.pk} in status {busy.status}",
                order_id=order.id,
                payment_id=busy.pk,
            )
        fields = {
            "order": order,
            "amount": order.total,
            "currency": order.currency,
            "gateway": adapter.name,
            "metadata": metadata,
        }
        if method:
            fields["method"] = method
        try:
            with transaction.atomic():
                payment = Payment.objects.create(**fields)
        except IntegrityError:
            raise DuplicatePaymentError(f"Order {order.id} already has an active payment", order_id=order.id)

    request = PaymentRequest(
        order_id=order.id,
        amount=payment.amount,
        currency=payment.currency,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        return_url=return_url,
        cancel_url=cancel_url,
        description=f"Order {order.number or order.id}",
        method=method,
        metadata={**metadata, "payment_id": payment.pk},
    )
    try:
        result = adapter.initiate(request)
    except GatewayError as exc:
        fail_payment(payment.pk, error_code="INITIATION_FAILED", error_message=exc.message)
        raise

    payment.gateway_reference = result.payment_id
    payment.session_data = result.session_data
    payment.payment_url = result.payment_url or ""
    payment.expires_at = result.expires_at
    payment.gateway_response = result.raw_response
    payment.save(
        update_fields=[
            "gateway_reference",
            "session_data",
            "payment_url",
            "expires_at",
            "gateway_response",
            "updated_at",
        ]
    )
    _emit(signals.payment_initiated, payment, source=SOURCE_API)
    logger.info(
        "payment.initiated",
        extra={"payment_id": payment.pk, "order_id": order.id, "gateway": adapter.name, "amount": str(payment.amount)},
    )
    return payment


def _mark_processing(payment_id) -> Payment:
    with transaction.atomic():
        payment = get_payment(payment_id, for_update=True)
        if payment.status == Payment.STATUS_PENDING:
            payment.status = Payment.STATUS_PROCESSING
            payment.save(update_fields=["status", "updated_at"])
        elif payment.status != Payment.STATUS_PROCESSING:
            raise InvalidPaymentStateError(
                f"Payment {payment.pk} in status {payment.status} cannot be confirmed", payment_id=payment.pk
            )
    return payment


def confirm_payment(payment_id, *, transaction_id: str = "", data: dict | None = None, registry=None) -> Payment:
    """Finalize a payment with its gateway after the customer returns.

    A declined confirmation marks the payment failed and leaves the order
    untouched. Transport errors propagate and leave the payment processing,
    so the call can be retried.
    """

    payment = get_payment(payment_id)
    if not payment.is_active:
        raise InvalidPaymentStateError(
            f"Payment {payment.pk} in status {payment.status} cannot be confirmed", payment_id=payment.pk
        )
    adapter = (registry or get_registry()).get(payment.gateway)
    payment = _mark_processing(payment.pk)

    provider_data = {
        **(data or {}),
        "transaction_id": transaction_id,
        "order_id": payment.gateway_reference,
        "amount": payment.amount,
        "currency": payment.currency,
    }
    response = adapter.confirm(payment.gateway_reference or transaction_id, provider_data)

    if response.success:
        payment, _ = complete_payment(
            payment.pk,
            transaction_id=response.transaction_id or transaction_id,
            approval_number=response.approval_number,
            raw_response=response.raw_response,
            source=SOURCE_API,
        )
    else:
        logger.warning(
            "payment.confirm_declined",
            extra={"payment_id": payment.pk, "gateway": payment.gateway, "error_code": response.error_code},
        )
        payment, _ = fail_payment(
            payment.pk,
            error_code=response.error_code,
            error_message=response.error_message,
            raw_response=response.raw_response,
            source=SOURCE_API,
        )
    return payment


def cancel_payment(payment_id, reason: str = "", *, registry=None) -> Payment:
    payment = get_payment(payment_id)
    if not payment.is_active:
        raise InvalidPaymentStateError(
            f"Payment {payment.pk} in status {payment.status} cannot be cancelled", payment_id=payment.pk
        )
    adapter = (registry or get_registry()).get(payment.gateway)
    raw_response = None
    provider_key = payment.transaction_id or payment.gateway_reference
    if provider_key:
        response = adapter.cancel(provider_key, reason)
        if not response.success:
            raise GatewayDeclinedError(
                response.error_message or "Gateway refused to cancel the payment",
                payment_id=payment.pk,
                error_code=response.error_code,
            )
        raw_response = response.raw_response

    payment, changed = cancel_payment_record(payment.pk, reason=reason, raw_response=raw_response)
    if not changed and payment.status != Payment.STATUS_CANCELLED:
        raise InvalidPaymentStateError(
            f"Payment {payment.pk} moved to {payment.status} before it could be cancelled", payment_id=payment.pk
        )
    return payment


def refund_payment(payment_id, amount=None, reason: str = "", *, registry=None) -> Payment:
    """Refund all or part of a completed payment.

    ``amount`` defaults to the remaining refundable balance. Requests above
    that balance are rejected before the gateway is contacted.
    """

    payment = get_payment(payment_id)
    if payment.status not in Payment.REFUNDABLE_STATUSES:
        raise InvalidPaymentStateError(
            f"Payment {payment.pk} in status {payment.status} cannot be refunded", payment_id=payment.pk
        )
    amount = payment.refundable_amount if amount is None else _to_amount(amount)
    if amount > payment.refundable_amount:
        raise RefundExceedsCapturedAmountError(
            f"Refund of {amount} exceeds refundable balance {payment.refundable_amount}",
            payment_id=payment.pk,
        )
    if not payment.transaction_id:
        raise InvalidPaymentStateError(f"Payment {payment.pk} has no gateway transaction", payment_id=payment.pk)

    adapter = (registry or get_registry()).get(payment.gateway)
    response = adapter.refund(
        RefundRequest(transaction_id=payment.transaction_id, amount=amount, currency=payment.currency, reason=reason)
    )
    if not response.success:
        logger.warning(
            "payment.refund_declined",
            extra={"payment_id": payment.pk, "gateway": payment.gateway, "error_code": response.error_code},
        )
        raise GatewayDeclinedError(
            response.error_message or "Gateway declined the refund",
            payment_id=payment.pk,
            error_code=response.error_code,
        )

    payment, _ = apply_refund(
        payment.pk,
        amount=amount,
        reason=reason,
        refund_id=response.refund_id,
        raw_response=response.raw_response,
        source=SOURCE_API,
    )
    return payment


def generate_receipt(payment_id, *, registry=None):
    payment = get_payment(payment_id)
    if payment.status not in Payment.REFUNDABLE_STATUSES + (Payment.STATUS_REFUNDED,) or not payment.transaction_id:
        raise InvalidPaymentStateError(f"Payment {payment.pk} has no completed transaction", payment_id=payment.pk)
    order = payment.order
    details = ReceiptDetails(
        items=tuple(
            ReceiptLine(
                description=item.product_title,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=item.line_total,
            )
            for item in order.items.all()
        ),
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        amount=payment.amount,
        currency=payment.currency,
        method=payment.method,
    )
    adapter = (registry or get_registry()).get(payment.gateway)
    return adapter.generate_receipt(payment.gateway_reference, payment.transaction_id, details)


# EOF
