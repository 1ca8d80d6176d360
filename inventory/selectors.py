"""Selectors for inventory domain (single-location)."""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from common.exceptions import NotFoundError
from django.conf import settings
from django.db.models import F, Sum
from django.utils import timezone

from .alerts import evaluate
from .models import StockItem, StockMovement


@dataclass
class InventoryHistory:
    product_id: int
    current_quantity: int
    total: int
    limit: int
    offset: int
    movements: list = field(default_factory=list)


@dataclass
class InventoryReport:
    total_products: int
    in_stock: int
    out_of_stock: int
    low_stock: int
    total_value: Decimal
    low_stock_value: Decimal
    average_stock_level: Decimal
    recent_movements: int
    lowest_stock: list = field(default_factory=list)


def tracked_stock():
    return StockItem.objects.filter(track_quantity=True).select_related("product", "product__category")


def low_stock_items():
    """Tracked products with 0 < quantity <= threshold, lowest first."""
    return tracked_stock().filter(quantity__gt=0, quantity__lte=F("low_stock_threshold")).order_by("quantity", "id")


def out_of_stock_items():
    return tracked_stock().filter(quantity__lte=0).order_by("quantity", "id")


def ledger_balance(product_id: int) -> int:
    """Sum of all movement deltas for a product."""
    total = StockMovement.objects.filter(stock_item__product_id=product_id).aggregate(total=Sum("quantity"))["total"]
    return int(total or 0)


def history(product_id: int, limit: int = 50, offset: int = 0) -> InventoryHistory:
    """Page of a product's movements, oldest first, with running balances.

    Balances are derived by walking backward from the current quantity
    through movements newest-first (skipping the ``offset`` newest), then the
    page is reversed into chronological order.
    """
    try:
        item = StockItem.objects.get(product_id=product_id)
    except StockItem.DoesNotExist:
        raise NotFoundError(f"No stock record for product {product_id}", product_id=product_id)

    limit = max(0, int(limit))
    offset = max(0, int(offset))
    newest_first = StockMovement.objects.filter(stock_item=item).order_by("-created_at", "-id")

    balance = int(item.quantity)
    if offset:
        balance -= sum(newest_first.values_list("quantity", flat=True)[:offset])

    page = list(newest_first[offset : offset + limit])
    for movement in page:
        movement.running_balance = balance
        balance -= int(movement.quantity)
    page.reverse()

    return InventoryHistory(
        product_id=product_id,
        current_quantity=int(item.quantity),
        total=newest_first.count(),
        limit=limit,
        offset=offset,
        movements=page,
    )


def report(top_n: int | None = None) -> InventoryReport:
    """Aggregate stock health and valuation over tracked products."""
    top_n = settings.INVENTORY_REPORT_TOP_N if top_n is None else int(top_n)
    items = list(tracked_stock().order_by("quantity", "id"))

    total_value = Decimal("0.00")
    low_stock_value = Decimal("0.00")
    in_stock = out_of_stock = low_stock = 0
    units = 0
    for item in items:
        on_hand = max(int(item.quantity), 0)
        value = Decimal(on_hand) * (item.product.price or Decimal("0.00"))
        units += on_hand
        total_value += value
        if on_hand == 0:
            out_of_stock += 1
            continue
        in_stock += 1
        if on_hand <= item.low_stock_threshold:
            low_stock += 1
            low_stock_value += value

    average = Decimal(units) / Decimal(len(items)) if items else Decimal("0")
    since = timezone.now() - timedelta(hours=24)

    return InventoryReport(
        total_products=len(items),
        in_stock=in_stock,
        out_of_stock=out_of_stock,
        low_stock=low_stock,
        total_value=total_value.quantize(Decimal("0.01")),
        low_stock_value=low_stock_value.quantize(Decimal("0.01")),
        average_stock_level=average.quantize(Decimal("0.01")),
        recent_movements=StockMovement.objects.filter(created_at__gte=since).count(),
        lowest_stock=[
            {
                "product_id": item.product_id,
                "sku": item.product.sku,
                "title": item.product.title,
                "quantity": int(item.quantity),
                "low_stock_threshold": int(item.low_stock_threshold),
                "alert": getattr(evaluate(item.quantity, item.low_stock_threshold), "value", None),
            }
            for item in items[:top_n]
        ],
    )


# EOF
