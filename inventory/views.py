"""Inventory ledger endpoints: adjustments, reservations, reports and read-only lists."""

from django.utils.dateparse import parse_datetime
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import selectors, services
from .models import StockItem, StockMovement
from .serializers import (
    AdjustmentSerializer,
    BulkAdjustmentSerializer,
    HistoryMovementSerializer,
    InventoryReportSerializer,
    ReservationSerializer,
    StockItemSerializer,
    StockMovementSerializer,
    ThresholdSerializer,
)


class InventoryAdjustView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Adjust stock",
        description=(
            "Apply a typed movement to a product. sale/damage subtract, purchase/restock/return add, "
            "adjustment applies the signed quantity."
        ),
        request=AdjustmentSerializer,
        responses={201: StockMovementSerializer},
        examples=[
            OpenApiExample(
                "Sale",
                value={"product_id": 1, "quantity": 3, "type": "sale", "reason": "POS sale"},
                request_only=True,
            ),
            OpenApiExample(
                "Insufficient",
                value={"error": "insufficient_inventory", "detail": "Insufficient stock for product 1"},
                response_only=True,
                status_codes=["409"],
            ),
        ],
    )
    def post(self, request):
        ser = AdjustmentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        movement = services.adjust(
            product_id=data["product_id"],
            quantity=data["quantity"],
            movement_type=data["type"],
            reason=data["reason"],
            reference=data["reference"],
        )
        body = StockMovementSerializer(movement).data
        body["current_quantity"] = movement.stock_item.quantity
        return Response(body, status=status.HTTP_201_CREATED)


class InventoryBulkAdjustView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Bulk adjust stock",
        description="Apply adjustments independently; failing entries are reported and skipped.",
        request=BulkAdjustmentSerializer,
        examples=[
            OpenApiExample(
                "Partial success",
                value={
                    "batch_id": "BATCH-20250101120000-a1b2c3",
                    "processed": 2,
                    "failed": 1,
                    "total": 3,
                    "movements": [],
                    "failures": [{"index": 1, "product_id": 999, "error": "not_found", "detail": "..."}],
                },
                response_only=True,
            )
        ],
    )
    def post(self, request):
        ser = BulkAdjustmentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = services.bulk_adjust(ser.validated_data["adjustments"])
        return Response(
            {
                "batch_id": result.batch_id,
                "processed": result.processed,
                "failed": result.failed,
                "total": result.total,
                "movements": StockMovementSerializer(result.movements, many=True).data,
                "failures": result.failures,
            }
        )


class LowStockListView(generics.ListAPIView):
    throttle_scope = "inventory"
    serializer_class = StockItemSerializer

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Low-stock products",
        description="Tracked products with 0 < quantity <= low-stock threshold.",
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        return selectors.low_stock_items()


class OutOfStockListView(generics.ListAPIView):
    throttle_scope = "inventory"
    serializer_class = StockItemSerializer

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Out-of-stock products",
        description="Tracked products with no stock on hand.",
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        return selectors.out_of_stock_items()


class InventoryReportView(APIView):
    throttle_scope = "inventory"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Inventory report",
        parameters=[OpenApiParameter(name="top", description="Lowest-stock rows", required=False, type=int)],
        responses={200: InventoryReportSerializer},
    )
    def get(self, request):
        top = request.query_params.get("top")
        data = selectors.report(top_n=int(top) if top and top.isdigit() else None)
        return Response(InventoryReportSerializer(data).data)


class InventoryHistoryView(APIView):
    throttle_scope = "inventory"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Product stock history",
        description="Movements in chronological order, each with the running balance after it was applied.",
        parameters=[
            OpenApiParameter(name="limit", required=False, type=int),
            OpenApiParameter(name="offset", required=False, type=int),
        ],
    )
    def get(self, request, product_id: int):
        limit = request.query_params.get("limit", "50")
        offset = request.query_params.get("offset", "0")
        page = selectors.history(
            product_id,
            limit=min(int(limit), 500) if limit.isdigit() else 50,
            offset=int(offset) if offset.isdigit() else 0,
        )
        return Response(
            {
                "product_id": page.product_id,
                "current_quantity": page.current_quantity,
                "count": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "results": HistoryMovementSerializer(page.movements, many=True).data,
            }
        )


class InventoryReserveView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Reserve stock for an order",
        description="All-or-nothing decrement across items; untracked products are skipped.",
        request=ReservationSerializer,
        responses={201: StockMovementSerializer(many=True)},
    )
    def post(self, request):
        ser = ReservationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        movements = services.reserve(
            items=[services.StockLine(**line) for line in ser.validated_data["items"]],
            order_id=ser.validated_data["order_id"],
        )
        return Response(StockMovementSerializer(movements, many=True).data, status=status.HTTP_201_CREATED)


class InventoryReleaseView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Release reserved stock",
        request=ReservationSerializer,
        responses={200: StockMovementSerializer(many=True)},
    )
    def post(self, request):
        ser = ReservationSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        movements = services.release(
            items=[services.StockLine(**line) for line in ser.validated_data["items"]],
            order_id=ser.validated_data["order_id"],
        )
        return Response(StockMovementSerializer(movements, many=True).data)


class ThresholdUpdateView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Update low-stock threshold",
        request=ThresholdSerializer,
        responses={200: StockItemSerializer},
    )
    def put(self, request, product_id: int):
        ser = ThresholdSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        item = services.update_low_stock_threshold(
            product_id=product_id,
            threshold=ser.validated_data["low_stock_threshold"],
            reason=ser.validated_data["reason"],
        )
        return Response(StockItemSerializer(item).data)


class StockItemListView(generics.ListAPIView):
    throttle_scope = "inventory"
    serializer_class = StockItemSerializer

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="List stock items",
        description="List current stock per product. Filters: product_id, sku, updated_after (ISO).",
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        qs = StockItem.objects.select_related("product").order_by("-updated_at", "id")
        product_id = self.request.query_params.get("product_id")
        sku = self.request.query_params.get("sku")
        updated_after = self.request.query_params.get("updated_after")

        if product_id:
            qs = qs.filter(product_id=product_id)
        if sku:
            qs = qs.filter(product__sku__iexact=sku)
        if updated_after:
            dt = parse_datetime(updated_after)
            if dt:
                qs = qs.filter(updated_at__gte=dt)
        return qs


class MovementListView(generics.ListAPIView):
    throttle_scope = "inventory"
    serializer_class = StockMovementSerializer

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="List stock movements",
        description="Filters: product_id, movement_type, reference, batch_id, created_after (ISO).",
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        qs = StockMovement.objects.select_related("stock_item").order_by("-created_at", "-id")
        params = self.request.query_params
        if params.get("product_id"):
            qs = qs.filter(stock_item__product_id=params["product_id"])
        if params.get("movement_type"):
            qs = qs.filter(movement_type=params["movement_type"])
        if params.get("reference"):
            qs = qs.filter(reference=params["reference"])
        if params.get("batch_id"):
            qs = qs.filter(batch_id=params["batch_id"])
        created_after = params.get("created_after")
        if created_after:
            dt = parse_datetime(created_after)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        return qs


# EOF
