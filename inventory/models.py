"""Inventory models (single-location ledger).

One ``StockItem`` per product holds the current quantity; every change to it
is recorded as an immutable ``StockMovement`` so that the sum of a product's
movement deltas always equals its current quantity.
"""

from common.choices import MovementType
from django.db import models


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class StockItem(TimeStampedModel):
    DEFAULT_LOW_STOCK_THRESHOLD = 10

    product = models.OneToOneField("catalog.Product", related_name="stock", on_delete=models.CASCADE)
    track_quantity = models.BooleanField(default=True)
    quantity = models.IntegerField(default=0)
    low_stock_threshold = models.PositiveIntegerField(default=DEFAULT_LOW_STOCK_THRESHOLD)
    allow_backorders = models.BooleanField(default=False)

    class Meta:
        ordering = ["-updated_at", "id"]
        constraints = [
            models.CheckConstraint(
                name="stock_non_negative_without_backorders",
                condition=models.Q(quantity__gte=0) | models.Q(allow_backorders=True),
            ),
        ]
        indexes = [
            models.Index(fields=["track_quantity", "quantity"]),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"StockItem<{self.product_id}> q={self.quantity} t={self.low_stock_threshold}"


class StockMovement(TimeStampedModel):
    TYPE_SALE = MovementType.SALE
    TYPE_PURCHASE = MovementType.PURCHASE
    TYPE_ADJUSTMENT = MovementType.ADJUSTMENT
    TYPE_RETURN = MovementType.RETURN
    TYPE_DAMAGE = MovementType.DAMAGE
    TYPE_RESTOCK = MovementType.RESTOCK
    TYPE_CHOICES = MovementType.choices

    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="movements")
    movement_type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    quantity = models.IntegerField()  # signed delta applied to StockItem.quantity
    reason = models.CharField(max_length=200, blank=True)
    reference = models.CharField(max_length=120, blank=True, db_index=True)
    batch_id = models.CharField(max_length=64, blank=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(name="movement_non_zero", condition=~models.Q(quantity=0)),
        ]
        indexes = [
            models.Index(fields=["stock_item", "created_at"]),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.movement_type} {self.quantity} for {self.stock_item_id}"


class StockThresholdChange(TimeStampedModel):
    """Versioned audit trail of low-stock threshold updates.

    Threshold edits are configuration, not stock, so they live outside the
    movement ledger.
    """

    stock_item = models.ForeignKey(StockItem, on_delete=models.CASCADE, related_name="threshold_changes")
    previous_threshold = models.PositiveIntegerField()
    new_threshold = models.PositiveIntegerField()
    reason = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:  # pragma: no cover
        return f"Threshold<{self.stock_item_id}> {self.previous_threshold}->{self.new_threshold}"


# EOF
