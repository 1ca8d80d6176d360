from django.urls import path

from .views import (
    InventoryAdjustView,
    InventoryBulkAdjustView,
    InventoryHistoryView,
    InventoryReleaseView,
    InventoryReportView,
    InventoryReserveView,
    LowStockListView,
    MovementListView,
    OutOfStockListView,
    StockItemListView,
    ThresholdUpdateView,
)

app_name = "inventory"

urlpatterns = [
    # Ledger mutations
    path("adjust/", InventoryAdjustView.as_view(), name="adjust"),
    path("bulk-adjust/", InventoryBulkAdjustView.as_view(), name="bulk-adjust"),
    path("reserve/", InventoryReserveView.as_view(), name="reserve"),
    path("release/", InventoryReleaseView.as_view(), name="release"),
    path("threshold/<int:product_id>/", ThresholdUpdateView.as_view(), name="threshold"),
    # Read-only endpoints
    path("low-stock/", LowStockListView.as_view(), name="low-stock"),
    path("out-of-stock/", OutOfStockListView.as_view(), name="out-of-stock"),
    path("report/", InventoryReportView.as_view(), name="report"),
    path("history/<int:product_id>/", InventoryHistoryView.as_view(), name="history"),
    path("stock-items/", StockItemListView.as_view(), name="stock-item-list"),
    path("movements/", MovementListView.as_view(), name="movement-list"),
]

# EOF
