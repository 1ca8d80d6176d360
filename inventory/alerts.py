"""Low-stock classification and alert dispatch.

``evaluate`` is a pure function of quantity and threshold. ``notify_stock_levels``
runs after a ledger transaction commits; it never raises, so a broken
notification channel cannot fail the stock change that triggered it.
"""

import logging
from dataclasses import dataclass

from common.choices import AlertPriority, AlertType

from .models import StockItem

logger = logging.getLogger("commerce.inventory")

CRITICAL_RATIO = 0.5

PRIORITY_BY_ALERT = {
    AlertType.LOW_STOCK: AlertPriority.MEDIUM,
    AlertType.CRITICAL_STOCK: AlertPriority.HIGH,
    AlertType.OUT_OF_STOCK: AlertPriority.CRITICAL,
}


@dataclass(frozen=True)
class StockAlert:
    product_id: int
    product_name: str
    product_sku: str
    category_name: str
    current_quantity: int
    low_stock_threshold: int
    alert_type: str
    priority: str

    def as_context(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "category_name": self.category_name,
            "current_quantity": self.current_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "alert_type": self.alert_type,
        }


def evaluate(quantity: int, threshold: int) -> AlertType | None:
    """Classify a stock level against its low-stock threshold.

    Checked in order: out of stock (quantity <= 0; backordered stock counts
    as out), critical (at or below half the threshold, rounded down), low
    (at or below the threshold). Returns None when stock is healthy.
    """
    quantity = int(quantity)
    threshold = int(threshold)
    if quantity <= 0:
        return AlertType.OUT_OF_STOCK
    if quantity <= int(threshold * CRITICAL_RATIO):
        return AlertType.CRITICAL_STOCK
    if quantity <= threshold:
        return AlertType.LOW_STOCK
    return None


def alert_for(item: StockItem) -> StockAlert | None:
    if not item.track_quantity:
        return None
    alert_type = evaluate(item.quantity, item.low_stock_threshold)
    if alert_type is None:
        return None
    product = item.product
    return StockAlert(
        product_id=product.id,
        product_name=product.title,
        product_sku=product.sku,
        category_name=product.category.name if product.category_id else "Uncategorized",
        current_quantity=int(item.quantity),
        low_stock_threshold=int(item.low_stock_threshold),
        alert_type=alert_type.value,
        priority=PRIORITY_BY_ALERT[alert_type].value,
    )


def dispatch(alert: StockAlert) -> bool:
    """Hand an alert to the notification service; failures are logged only."""
    from notifications.services import get_notification_service

    try:
        get_notification_service().send_stock_alert(alert)
    except Exception:
        logger.exception(
            "inventory.alert_dispatch_failed",
            extra={"event": "inventory.alert_dispatch_failed", "product_id": alert.product_id},
        )
        return False
    return True


def notify_stock_levels(product_ids) -> list[StockAlert]:
    """Evaluate current stock for the given products and dispatch any alerts."""
    alerts: list[StockAlert] = []
    try:
        items = list(
            StockItem.objects.select_related("product", "product__category").filter(
                product_id__in=sorted(set(product_ids)), track_quantity=True
            )
        )
    except Exception:
        logger.exception("inventory.alert_lookup_failed", extra={"event": "inventory.alert_lookup_failed"})
        return alerts
    for item in items:
        alert = alert_for(item)
        if alert is None:
            continue
        logger.info(
            "inventory.stock_alert",
            extra={
                "event": "inventory.stock_alert",
                "product_id": alert.product_id,
                "alert_type": alert.alert_type,
                "quantity": alert.current_quantity,
                "threshold": alert.low_stock_threshold,
            },
        )
        dispatch(alert)
        alerts.append(alert)
    return alerts


# EOF
