import logging
from decimal import Decimal

from catalog.models import Product
from common.choices import OrderStatus, PaymentStatus
from common.exceptions import NotFoundError, ValidationError
from django.db import transaction
from inventory.services import StockLine, held_for_order, release, reserve

from .models import Order, OrderItem, OrderStatusHistory

logger = logging.getLogger("commerce.orders")


def get_order_by_id(order_id, *, for_update: bool = False) -> Order:
    qs = Order.objects.select_for_update() if for_update else Order.objects.all()
    try:
        return qs.get(pk=order_id)
    except (Order.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Order {order_id} not found", order_id=order_id)


def append_status_history(order: Order, notes: str, status: str | None = None) -> OrderStatusHistory:
    """Append a timeline note; ``status`` defaults to the order's current status."""
    return OrderStatusHistory.objects.create(order=order, status=status or order.status, notes=notes[:500])


def update_order_status(order: Order, status: str, notes: str = "") -> Order:
    """Move an order to ``status`` and record the change on its timeline."""

    if status not in OrderStatus.values:
        raise ValidationError(f"Unknown order status: {status}")
    prev = order.status
    if prev == status:
        return order
    order.status = status
    order.save(update_fields=["status", "updated_at"])
    append_status_history(order, notes or f"Status changed from {prev} to {status}")
    logger.info(
        "order_status_changed",
        extra={
            "order_id": order.id,
            "status_from": prev,
            "status_to": order.status,
        },
    )
    return order


def order_reservation_items(order: Order) -> list[StockLine]:
    """Lines still reserved for the order according to the stock ledger."""
    return held_for_order(order.id)


def create_order(
    *,
    items,
    customer_name: str = "",
    customer_email: str = "",
    customer_phone: str = "",
    currency: str = "USD",
) -> Order:
    """Create an order from ``{product_id, quantity}`` lines and reserve its stock.

    Order rows and the inventory reservation commit together; if any line is
    short on stock nothing is written.
    """

    lines = [StockLine(product_id=int(line["product_id"]), quantity=int(line["quantity"])) for line in items]
    if not lines:
        raise ValidationError("An order needs at least one item")
    products = Product.objects.in_bulk([line.product_id for line in lines])
    for line in lines:
        if line.product_id not in products:
            raise NotFoundError(f"Product {line.product_id} not found", product_id=line.product_id)
        if line.quantity <= 0:
            raise ValidationError("Quantity must be positive", product_id=line.product_id)

    with transaction.atomic():
        order = Order.objects.create(
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            currency=currency.upper(),
        )
        total = Decimal("0.00")
        for line in lines:
            product = products[line.product_id]
            item = OrderItem.objects.create(
                order=order,
                product=product,
                product_title=product.title,
                product_sku=product.sku,
                quantity=line.quantity,
                unit_price=product.price,
            )
            total += item.line_total
        # Generate user-friendly order number (unique)
        order.number = f"ORD-{int(order.id):06d}"
        order.total = total
        order.save(update_fields=["number", "total"])
        reserve(items=lines, order_id=order.id)
        append_status_history(order, "Order placed")

    logger.info(
        "order_created",
        extra={"order_id": order.id, "lines": len(lines), "total": str(order.total)},
    )
    return order


def cancel_order(order_id, reason: str = "") -> Order:
    """Cancel an unpaid order and release its reserved stock.

    Pending payments are cancelled with the order so they can no longer be
    confirmed. An order whose payment is mid-confirmation cannot be
    cancelled; paid orders go through a refund instead.
    """
    from payments.services import cancel_payment_record

    with transaction.atomic():
        order = get_order_by_id(order_id, for_update=True)
        if order.status == Order.STATUS_CANCELLED:
            return order
        if order.status != Order.STATUS_PENDING:
            raise ValidationError(f"Order in status {order.status} cannot be cancelled", order_id=order.id)
        open_payments = list(
            order.payments.filter(status__in=[PaymentStatus.PENDING, PaymentStatus.PROCESSING]).values_list(
                "pk", "status"
            )
        )
        if any(status == PaymentStatus.PROCESSING for _, status in open_payments):
            raise ValidationError(f"Order {order.id} has a payment being confirmed", order_id=order.id)
        for payment_id, _ in open_payments:
            cancel_payment_record(payment_id, reason="order_cancelled")
        items = order_reservation_items(order)
        if items:
            release(items=items, order_id=order.id)
        note = f"Order cancelled: {reason}" if reason else "Order cancelled"
        update_order_status(order, Order.STATUS_CANCELLED, notes=note)
    return order
