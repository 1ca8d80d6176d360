from django.urls import path

from .views import (
    GatewayListView,
    PaymentCancelView,
    PaymentConfirmView,
    PaymentDetailView,
    PaymentInitiateView,
    PaymentListView,
    PaymentReceiptView,
    PaymentRefundView,
)

app_name = "payments"

urlpatterns = [
    path("", PaymentListView.as_view(), name="list"),
    path("initiate/", PaymentInitiateView.as_view(), name="initiate"),
    path("gateways/", GatewayListView.as_view(), name="gateways"),
    path("<int:payment_id>/", PaymentDetailView.as_view(), name="detail"),
    path("<int:payment_id>/confirm/", PaymentConfirmView.as_view(), name="confirm"),
    path("<int:payment_id>/cancel/", PaymentCancelView.as_view(), name="cancel"),
    path("<int:payment_id>/refund/", PaymentRefundView.as_view(), name="refund"),
    path("<int:payment_id>/receipt/", PaymentReceiptView.as_view(), name="receipt"),
]

# EOF
