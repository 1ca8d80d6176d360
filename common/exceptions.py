"""Domain error taxonomy shared by inventory, orders and payments.

Services raise these; the DRF exception handler below turns them into a
structured ``{"error": <code>, "detail": <message>}`` body with the status
code carried by the exception class.
"""

import logging

from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger("commerce.errors")


class ServiceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "service_error"
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class ValidationError(ServiceError):
    code = "validation_error"
    default_message = "Invalid input."


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found."


class InsufficientInventoryError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_inventory"
    default_message = "Insufficient inventory."


class DuplicatePaymentError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_payment"
    default_message = "A payment is already in progress for this order."


class InvalidPaymentStateError(ValidationError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_payment_state"
    default_message = "Payment is not in a state that allows this operation."


class UnsupportedGatewayError(ServiceError):
    code = "unsupported_gateway"
    default_message = "Unsupported payment gateway."


class InvalidSignatureError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_signature"
    default_message = "Webhook signature verification failed."


class GatewayError(ServiceError):
    """The provider rejected a request or returned something unusable."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "gateway_error"
    default_message = "Payment gateway error."


class GatewayTransportError(GatewayError):
    """Network failure or timeout talking to the provider."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "gateway_transport_error"
    default_message = "Payment gateway is unreachable."


class GatewayDeclinedError(ServiceError):
    """The provider answered with a business failure (e.g. refund declined)."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "gateway_declined"
    default_message = "Payment gateway declined the request."


class RefundExceedsCapturedAmountError(ServiceError):
    code = "refund_exceeds_captured_amount"
    default_message = "Refund amount exceeds the refundable balance."


def api_exception_handler(exc, context):
    """DRF exception handler rendering every error as ``{"error", "detail"}``.

    ServiceError subclasses carry their own code and status. DRF/Django
    errors keep DRF's status and detail, with a code derived from the
    exception (serializer errors map to ``validation_error``).
    """
    if isinstance(exc, ServiceError):
        if exc.status_code >= 500:
            logger.warning(
                "service_error",
                extra={"error": exc.code, "detail": exc.message, "view": type(context.get("view")).__name__},
            )
        return Response({"error": exc.code, "detail": exc.message}, status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return None
    if isinstance(exc, drf_exceptions.ValidationError):
        code = ValidationError.code
    elif isinstance(exc, Http404):
        code = NotFoundError.code
    else:
        code = getattr(exc, "default_code", "error")
    data = response.data
    if isinstance(data, dict) and set(data) == {"detail"}:
        data = data["detail"]
    response.data = {"error": code, "detail": data}
    return response
