"""PayPal Orders v2 adapter.

``initiate`` creates a CAPTURE-intent order and returns its approve link;
``confirm`` captures it. Access tokens come from the client-credentials
grant and are cached on the adapter until shortly before they expire.
"""

import logging
import threading
import time
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from common.exceptions import GatewayError

from .base import (
    ZERO_DECIMAL_CURRENCIES,
    GatewayAdapter,
    GatewayResponse,
    InitiationResult,
    PaymentRequest,
    RefundRequest,
    canonical_body,
    hmac_sha256_hex,
    signature_matches,
)

logger = logging.getLogger("commerce.payments")

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

# Refresh this many seconds before PayPal says the token expires.
TOKEN_LEEWAY = 60


class PayPalAdapter(GatewayAdapter):
    name = "paypal"
    receipt_prefix = "PP-"
    methods = ("paypal", "card", "venmo", "paylater")
    currencies = ("USD", "EUR", "GBP", "JPY", "CAD", "AUD", "HKD", "SGD")
    session_ttl = timedelta(hours=3)

    def __init__(self, *, client_id: str, client_secret: str, webhook_secret: str = "", mode: str = "sandbox", **kwargs):
        if not client_id or not client_secret:
            raise GatewayError("PayPal client id and secret are required", gateway=self.name)
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_secret
        self.api_url = LIVE_URL if mode == "live" else SANDBOX_URL
        self._token = None
        self._token_expiry = 0.0
        self._token_lock = threading.Lock()

    def format_value(self, amount, currency: str) -> str:
        """PayPal takes decimal strings, whole units for zero-decimal currencies."""
        value = Decimal(str(amount))
        if currency.upper() in ZERO_DECIMAL_CURRENCIES:
            return str(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    def parse_amount(self, value, currency: str) -> Decimal:
        return Decimal(str(value)).quantize(Decimal("0.01"))

    def access_token(self) -> str:
        with self._token_lock:
            if self._token and self._token_expiry > time.monotonic():
                return self._token
            response = self._request(
                "POST",
                f"{self.api_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
            data = self._json(response)
            if not response.ok or "access_token" not in data:
                raise GatewayError("Failed to authenticate with PayPal", gateway=self.name)
            self._token = data["access_token"]
            self._token_expiry = time.monotonic() + max(int(data.get("expires_in", 0)) - TOKEN_LEEWAY, 0)
            return self._token

    def _call(self, method: str, path: str, **kwargs):
        headers = {"Authorization": f"Bearer {self.access_token()}", "Content-Type": "application/json"}
        response = self._request(method, f"{self.api_url}{path}", headers=headers, **kwargs)
        return response.ok, self._json(response)

    @staticmethod
    def _error(data: dict, default_code: str) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            error_code=data.get("name") or default_code,
            error_message=data.get("message") or "PayPal request failed",
            raw_response=data,
        )

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": str(request.order_id),
                    "custom_id": str(request.metadata.get("payment_id", "")),
                    "amount": {
                        "currency_code": request.currency.upper(),
                        "value": self.format_value(request.amount, request.currency),
                    },
                    "description": request.description or f"Order {request.order_id}",
                }
            ],
            "application_context": {
                "return_url": request.return_url,
                "cancel_url": request.cancel_url or request.return_url,
                "user_action": "PAY_NOW",
            },
        }
        ok, data = self._call("POST", "/v2/checkout/orders", json=body)
        if not ok:
            logger.warning("gateway.initiate_rejected", extra={"gateway": self.name, "error": data.get("name")})
            raise GatewayError(data.get("message") or "Failed to initiate payment", gateway=self.name)
        approve = next((link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), "")
        return InitiationResult(
            payment_id=data["id"],
            payment_url=approve,
            session_data={"orderId": data["id"]},
            expires_at=self.expiry(),
            raw_response=data,
        )

    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        ok, result = self._call("POST", f"/v2/checkout/orders/{payment_id}/capture", json={})
        if not ok:
            return self._error(result, "CONFIRM_ERROR")
        status = result.get("status", "")
        if status != "COMPLETED":
            return GatewayResponse(
                success=False,
                status=status,
                error_code=status or "CONFIRM_ERROR",
                error_message=f"Payment status: {status}",
                raw_response=result,
            )
        captures = result["purchase_units"][0]["payments"]["captures"]
        return GatewayResponse(
            success=True,
            transaction_id=captures[0]["id"],
            approval_number=result.get("id", payment_id),
            status=status,
            raw_response=result,
        )

    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        # Uncaptured PayPal orders expire after three hours; there is no cancel call.
        return GatewayResponse(success=True, transaction_id=payment_id, status="cancelled")

    def refund(self, request: RefundRequest) -> GatewayResponse:
        body = {
            "amount": {
                "value": self.format_value(request.amount, request.currency),
                "currency_code": request.currency.upper(),
            },
            "note_to_payer": request.reason or "refund",
        }
        ok, result = self._call("POST", f"/v2/payments/captures/{request.transaction_id}/refund", json=body)
        if not ok:
            return self._error(result, "REFUND_ERROR")
        status = result.get("status", "")
        if status not in ("COMPLETED", "PENDING"):
            return GatewayResponse(
                success=False,
                status=status,
                error_code=status or "REFUND_ERROR",
                error_message=f"Refund status: {status}",
                raw_response=result,
            )
        return GatewayResponse(
            success=True,
            transaction_id=request.transaction_id,
            refund_id=result.get("id", ""),
            status=status,
            raw_response=result,
        )

    def get_status(self, transaction_id: str) -> GatewayResponse:
        ok, result = self._call("GET", f"/v2/payments/captures/{transaction_id}")
        if not ok:
            return self._error(result, "QUERY_ERROR")
        return GatewayResponse(
            success=result.get("status") in ("COMPLETED", "PARTIALLY_REFUNDED", "REFUNDED"),
            transaction_id=result.get("id", transaction_id),
            status=result.get("status", ""),
            raw_response=result,
        )

    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        # PayPal's own scheme needs a certificate round trip; HMAC with a shared secret is best-effort.
        if not self.webhook_secret:
            return False
        expected = hmac_sha256_hex(self.webhook_secret, canonical_body(payload, raw_body))
        return signature_matches(expected, signature)

    def receipt_fields(self, raw: dict) -> dict:
        amount = raw.get("amount") or {}
        return {
            "amount": self.parse_amount(amount["value"], "") if amount.get("value") else None,
            "currency": amount.get("currency_code", ""),
            "method": "paypal",
        }


# EOF
