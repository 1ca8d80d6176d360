"""Orders API endpoints: checkout, detail and cancellation."""

from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Order
from .serializers import OrderCancelSerializer, OrderCreateSerializer, OrderSerializer
from .services import cancel_order, create_order, get_order_by_id


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"


class OrderListCreateView(generics.ListAPIView):
    """List orders or place a new one.

    Filters:
    - `status`: one of the OrderStatus values
    - `number`: exact match of order number
    """

    serializer_class = OrderSerializer
    pagination_class = DefaultPagination
    throttle_scope = "orders"

    def get_queryset(self):
        qs = Order.objects.order_by("-id").prefetch_related("items", "history")
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        number = self.request.query_params.get("number")
        if number:
            qs = qs.filter(number=number)
        return qs

    @extend_schema(
        tags=["Orders"],
        summary="List orders",
        parameters=[
            OpenApiParameter(name="status", description="Order status filter", required=False, type=str),
            OpenApiParameter(name="number", description="Order number exact match", required=False, type=str),
        ],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @extend_schema(
        tags=["Orders"],
        summary="Place order",
        description="Creates the order and reserves stock for every line in one transaction.",
        request=OrderCreateSerializer,
        responses={201: OrderSerializer},
        examples=[
            OpenApiExample(
                "Checkout",
                value={
                    "items": [{"product_id": 1, "quantity": 2}],
                    "customer_name": "Kim Minji",
                    "customer_email": "minji@example.com",
                    "currency": "KRW",
                },
                request_only=True,
            )
        ],
    )
    def post(self, request):
        ser = OrderCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        order = create_order(**ser.validated_data)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    throttle_scope = "orders"

    @extend_schema(tags=["Orders"], summary="Get order detail", responses={200: OrderSerializer})
    def get(self, request, order_id: int):
        return Response(OrderSerializer(get_order_by_id(order_id)).data)


class OrderCancelView(APIView):
    """Cancel a pending order and release its reserved stock."""

    throttle_scope = "orders_write"

    @extend_schema(
        tags=["Orders"],
        summary="Cancel order",
        request=OrderCancelSerializer,
        responses={200: OrderSerializer},
        examples=[
            OpenApiExample("Cancelled", value={"id": 1, "status": "cancelled"}, response_only=True),
        ],
    )
    def post(self, request, order_id: int):
        ser = OrderCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        order = cancel_order(order_id, reason=ser.validated_data["reason"])
        return Response(OrderSerializer(order).data)
