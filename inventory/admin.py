"""Admin registrations for inventory app.

Movements and threshold changes are append-only, so their admins are read-only.
"""

from django.contrib import admin

from .models import StockItem, StockMovement, StockThresholdChange


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(StockItem)
class StockItemAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "track_quantity", "quantity", "low_stock_threshold", "allow_backorders")
    list_filter = ("track_quantity", "allow_backorders")
    search_fields = ("product__sku", "product__title")
    # Quantity only moves through the ledger services
    readonly_fields = ("quantity", "low_stock_threshold")


@admin.register(StockMovement)
class StockMovementAdmin(ReadOnlyAdmin):
    list_display = ("id", "stock_item", "movement_type", "quantity", "reason", "reference", "batch_id", "created_at")
    list_filter = ("movement_type",)
    search_fields = ("stock_item__product__sku", "reference", "batch_id")


@admin.register(StockThresholdChange)
class StockThresholdChangeAdmin(ReadOnlyAdmin):
    list_display = ("id", "stock_item", "previous_threshold", "new_threshold", "reason", "created_at")
    search_fields = ("stock_item__product__sku",)


# EOF
