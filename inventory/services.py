"""Inventory services (single-location): transactional stock ledger.

Every mutation locks the product's ``StockItem`` row, updates its quantity
and appends a ``StockMovement`` inside one transaction. Low-stock checks run
after the transaction commits.
"""

import logging
from dataclasses import dataclass, field
from uuid import uuid4

from common.choices import MovementType
from common.exceptions import InsufficientInventoryError, NotFoundError, ServiceError, ValidationError
from django.db import DatabaseError, transaction
from django.db.models import Sum
from django.utils import timezone

from .alerts import notify_stock_levels
from .models import StockItem, StockMovement, StockThresholdChange
from .serializers import AdjustmentSerializer

logger = logging.getLogger("commerce.inventory")

SUBTRACTING_TYPES = {StockMovement.TYPE_SALE, StockMovement.TYPE_DAMAGE}
ADDING_TYPES = {StockMovement.TYPE_PURCHASE, StockMovement.TYPE_RESTOCK, StockMovement.TYPE_RETURN}

RESERVATION_REASON = "Order reservation"
RELEASE_REASON = "Order cancellation"


@dataclass(frozen=True)
class StockLine:
    """A product/quantity pair used by reserve and release."""

    product_id: int
    quantity: int


@dataclass
class BulkAdjustResult:
    batch_id: str
    total: int
    movements: list = field(default_factory=list)
    failures: list = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.movements)

    @property
    def failed(self) -> int:
        return len(self.failures)


def signed_delta(movement_type: str, quantity: int) -> int:
    """Translate a requested quantity into the signed delta for its type.

    sale/damage always subtract, purchase/restock/return always add, and
    adjustment applies the caller's sign as given.
    """
    if movement_type not in MovementType.values:
        raise ValidationError(f"Unknown movement type: {movement_type}")
    if movement_type in SUBTRACTING_TYPES:
        return -abs(int(quantity))
    if movement_type in ADDING_TYPES:
        return abs(int(quantity))
    return int(quantity)


def _schedule_alerts(product_ids) -> None:
    ids = list(product_ids)
    if ids:
        transaction.on_commit(lambda: notify_stock_levels(ids))


def _lock_stock_item(product_id: int) -> StockItem:
    try:
        return StockItem.objects.select_for_update().get(product_id=product_id)
    except StockItem.DoesNotExist:
        raise NotFoundError(f"No stock record for product {product_id}", product_id=product_id)


def _apply(item: StockItem, *, delta: int, movement_type: str, reason: str, reference: str, batch_id: str = ""):
    new_quantity = int(item.quantity) + int(delta)
    if new_quantity < 0 and not item.allow_backorders:
        raise InsufficientInventoryError(
            f"Insufficient stock for product {item.product_id}: available {item.quantity}, requested {abs(delta)}",
            product_id=item.product_id,
        )
    item.quantity = new_quantity
    item.save(update_fields=["quantity", "updated_at"])
    return StockMovement.objects.create(
        stock_item=item,
        movement_type=movement_type,
        quantity=delta,
        reason=reason,
        reference=reference,
        batch_id=batch_id,
    )


@transaction.atomic
def create_stock_item(
    *,
    product,
    quantity: int = 0,
    low_stock_threshold: int = StockItem.DEFAULT_LOW_STOCK_THRESHOLD,
    track_quantity: bool = True,
    allow_backorders: bool = False,
) -> StockItem:
    """Start tracking a product. A non-zero opening balance is recorded as a purchase."""

    if int(quantity) < 0 and not allow_backorders:
        raise ValidationError("Opening quantity cannot be negative")
    item = StockItem.objects.create(
        product=product,
        quantity=0,
        low_stock_threshold=low_stock_threshold,
        track_quantity=track_quantity,
        allow_backorders=allow_backorders,
    )
    if int(quantity) != 0:
        _apply(
            item,
            delta=int(quantity),
            movement_type=StockMovement.TYPE_PURCHASE if int(quantity) > 0 else StockMovement.TYPE_ADJUSTMENT,
            reason="Opening balance",
            reference="",
        )
    return item


@transaction.atomic
def adjust(
    *,
    product_id: int,
    quantity: int,
    movement_type: str,
    reason: str = "",
    reference: str = "",
    batch_id: str = "",
) -> StockMovement:
    """Apply one typed stock movement to a product.

    Raises ValidationError for zero/unknown input or untracked products,
    NotFoundError when the product has no stock record, and
    InsufficientInventoryError when the result would go negative without
    backorders.
    """
    delta = signed_delta(movement_type, quantity)
    if delta == 0:
        raise ValidationError("Quantity must be non-zero")

    item = _lock_stock_item(product_id)
    if not item.track_quantity:
        raise ValidationError(f"Product {product_id} does not track inventory", product_id=product_id)

    previous = int(item.quantity)
    movement = _apply(
        item,
        delta=delta,
        movement_type=movement_type,
        reason=reason,
        reference=reference,
        batch_id=batch_id,
    )
    logger.info(
        "inventory.stock_adjusted",
        extra={
            "event": "inventory.stock_adjusted",
            "product_id": product_id,
            "movement_type": movement_type,
            "delta": delta,
            "quantity_from": previous,
            "quantity_to": item.quantity,
            "reference": reference,
        },
    )
    _schedule_alerts([product_id])
    return movement


def _validated_entry(entry) -> dict:
    if not isinstance(entry, dict):
        raise ValidationError("Adjustment must be an object")
    data = {**entry, "type": entry.get("movement_type") or entry.get("type") or ""}
    ser = AdjustmentSerializer(data=data)
    if not ser.is_valid():
        field_name, messages = next(iter(ser.errors.items()))
        raise ValidationError(f"{field_name}: {messages[0]}", field=field_name)
    return ser.validated_data


def bulk_adjust(adjustments) -> BulkAdjustResult:
    """Apply many adjustments independently under one batch id.

    Each entry is a mapping with ``product_id``, ``quantity``, ``movement_type``
    (or ``type``) and optional ``reason``/``reference``, validated like a
    single adjustment. A failing entry is logged and reported in ``failures``;
    it does not affect the others.
    """
    batch_id = f"BATCH-{timezone.now():%Y%m%d%H%M%S}-{uuid4().hex[:6]}"
    result = BulkAdjustResult(batch_id=batch_id, total=len(adjustments))
    for index, entry in enumerate(adjustments):
        product_id = entry.get("product_id") if isinstance(entry, dict) else None
        try:
            data = _validated_entry(entry)
            movement = adjust(
                product_id=data["product_id"],
                quantity=data["quantity"],
                movement_type=data["type"],
                reason=data["reason"],
                reference=data["reference"] or batch_id,
                batch_id=batch_id,
            )
        except ServiceError as exc:
            logger.warning(
                "inventory.bulk_item_failed",
                extra={
                    "event": "inventory.bulk_item_failed",
                    "batch_id": batch_id,
                    "index": index,
                    "product_id": product_id,
                    "error": exc.code,
                },
            )
            result.failures.append({"index": index, "product_id": product_id, "error": exc.code, "detail": exc.message})
            continue
        except (DatabaseError, OverflowError):
            # Values the database cannot store; adjust() already rolled its savepoint back
            logger.error(
                "inventory.bulk_item_failed",
                extra={
                    "event": "inventory.bulk_item_failed",
                    "batch_id": batch_id,
                    "index": index,
                    "product_id": product_id,
                    "error": "database_error",
                },
                exc_info=True,
            )
            result.failures.append(
                {"index": index, "product_id": product_id, "error": "database_error", "detail": "Could not be stored."}
            )
            continue
        result.movements.append(movement)
    logger.info(
        "inventory.bulk_adjusted",
        extra={
            "event": "inventory.bulk_adjusted",
            "batch_id": batch_id,
            "processed": result.processed,
            "failed": result.failed,
        },
    )
    return result


def _merge_lines(items) -> dict[int, int]:
    merged: dict[int, int] = {}
    for line in items:
        product_id = int(line.product_id)
        qty = int(line.quantity)
        if qty <= 0:
            raise ValidationError("Quantity must be positive", product_id=product_id)
        merged[product_id] = merged.get(product_id, 0) + qty
    if not merged:
        raise ValidationError("At least one item is required")
    return merged


def _lock_many(product_ids) -> dict[int, StockItem]:
    # Sorted locking order keeps concurrent multi-item reservations deadlock-free
    qs = StockItem.objects.select_for_update().filter(product_id__in=sorted(product_ids)).order_by("product_id")
    return {item.product_id: item for item in qs}


@transaction.atomic
def reserve(*, items, order_id) -> list[StockMovement]:
    """Decrement stock for every tracked line of an order, all or nothing."""

    merged = _merge_lines(items)
    locked = _lock_many(merged)
    missing = [pid for pid in merged if pid not in locked]
    if missing:
        raise NotFoundError(f"No stock record for product {missing[0]}", product_id=missing[0])

    movements = []
    for product_id in sorted(merged):
        item = locked[product_id]
        if not item.track_quantity:
            continue
        movements.append(
            _apply(
                item,
                delta=-merged[product_id],
                movement_type=StockMovement.TYPE_SALE,
                reason=RESERVATION_REASON,
                reference=str(order_id),
            )
        )
    logger.info(
        "inventory.reserved",
        extra={
            "event": "inventory.reserved",
            "order_id": str(order_id),
            "lines": len(movements),
        },
    )
    _schedule_alerts(m.stock_item.product_id for m in movements)
    return movements


@transaction.atomic
def release(*, items, order_id, reason: str = RELEASE_REASON) -> list[StockMovement]:
    """Return previously reserved stock; unknown or untracked products are skipped."""

    merged = _merge_lines(items)
    locked = _lock_many(merged)
    movements = []
    for product_id in sorted(merged):
        item = locked.get(product_id)
        if item is None:
            logger.warning(
                "inventory.release_skipped",
                extra={"event": "inventory.release_skipped", "order_id": str(order_id), "product_id": product_id},
            )
            continue
        if not item.track_quantity:
            continue
        movements.append(
            _apply(
                item,
                delta=merged[product_id],
                movement_type=StockMovement.TYPE_RETURN,
                reason=reason,
                reference=str(order_id),
            )
        )
    logger.info(
        "inventory.released",
        extra={
            "event": "inventory.released",
            "order_id": str(order_id),
            "lines": len(movements),
        },
    )
    _schedule_alerts(m.stock_item.product_id for m in movements)
    return movements


def held_for_order(order_id) -> list[StockLine]:
    """Stock an order still holds: its reservation movements net of returns."""
    rows = (
        StockMovement.objects.filter(
            reference=str(order_id),
            movement_type__in=[StockMovement.TYPE_SALE, StockMovement.TYPE_RETURN],
        )
        .values("stock_item__product_id")
        .annotate(net=Sum("quantity"))
        .order_by("stock_item__product_id")
    )
    return [StockLine(product_id=row["stock_item__product_id"], quantity=-row["net"]) for row in rows if row["net"] < 0]


@transaction.atomic
def update_low_stock_threshold(*, product_id: int, threshold: int, reason: str = "") -> StockItem:
    """Change a product's low-stock threshold and record the change."""

    if int(threshold) < 0:
        raise ValidationError("Threshold cannot be negative")
    item = _lock_stock_item(product_id)
    previous = int(item.low_stock_threshold)
    if previous == int(threshold):
        return item
    item.low_stock_threshold = int(threshold)
    item.save(update_fields=["low_stock_threshold", "updated_at"])
    StockThresholdChange.objects.create(
        stock_item=item,
        previous_threshold=previous,
        new_threshold=int(threshold),
        reason=reason,
    )
    logger.info(
        "inventory.threshold_changed",
        extra={
            "event": "inventory.threshold_changed",
            "product_id": product_id,
            "threshold_from": previous,
            "threshold_to": int(threshold),
        },
    )
    _schedule_alerts([product_id])
    return item


# EOF
