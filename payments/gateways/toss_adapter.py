"""TossPayments adapter (REST v1, HTTP Basic with the secret key).

Payment starts client-side in the Toss widget; ``initiate`` only builds the
widget parameters. The customer returns with a ``paymentKey`` which
``confirm`` exchanges for an approved payment.
"""

import base64

from common.exceptions import GatewayError

from .base import (
    GatewayAdapter,
    GatewayResponse,
    InitiationResult,
    PaymentRequest,
    RefundRequest,
    canonical_body,
    hmac_sha256_hex,
    signature_matches,
)

API_URL = "https://api.tosspayments.com/v1"


class TossPaymentsAdapter(GatewayAdapter):
    name = "toss_payments"
    receipt_prefix = "TP-"
    methods = ("CARD", "VIRTUAL_ACCOUNT", "TRANSFER", "MOBILE_PHONE", "GIFT_CARD", "EASY_PAY")
    currencies = ("KRW", "USD", "JPY", "EUR", "GBP", "CNY", "HKD")

    def __init__(self, *, secret_key: str, client_key: str = "", webhook_secret: str = "", **kwargs):
        if not secret_key:
            raise GatewayError("TossPayments secret key is required", gateway=self.name)
        super().__init__(**kwargs)
        self.secret_key = secret_key
        self.client_key = client_key
        self.webhook_secret = webhook_secret
        token = base64.b64encode(f"{secret_key}:".encode()).decode()
        self.session.headers.update({"Authorization": f"Basic {token}"})

    def _call(self, method: str, path: str, **kwargs) -> tuple[bool, dict]:
        response = self._request(method, f"{API_URL}{path}", **kwargs)
        return response.ok, self._json(response)

    @staticmethod
    def _error(data: dict, default_code: str) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            error_code=data.get("code") or default_code,
            error_message=data.get("message") or "TossPayments request failed",
            raw_response=data,
        )

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        reference = self.make_reference(request.order_id)
        return InitiationResult(
            payment_id=reference,
            session_data={
                "clientKey": self.client_key,
                "amount": self.format_amount(request.amount, request.currency),
                "currency": request.currency.upper(),
                "orderId": reference,
                "orderName": request.description or f"Order {request.order_id}",
                "customerName": request.customer_name,
                "customerEmail": request.customer_email,
                "successUrl": request.return_url,
                "failUrl": request.cancel_url or request.return_url,
            },
            expires_at=self.expiry(),
        )

    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        payment_key = data.get("paymentKey") or data.get("transaction_id")
        if not payment_key:
            return GatewayResponse(
                success=False,
                error_code="MISSING_PAYMENT_KEY",
                error_message="paymentKey is required to confirm a TossPayments payment",
            )
        body = {
            "paymentKey": payment_key,
            "orderId": data.get("order_id") or data.get("orderId") or payment_id,
            "amount": self.format_amount(data.get("amount", 0), data.get("currency", "KRW")),
        }
        ok, result = self._call("POST", "/payments/confirm", json=body)
        if not ok:
            return self._error(result, "CONFIRM_ERROR")
        return GatewayResponse(
            success=True,
            transaction_id=result.get("paymentKey", payment_key),
            approval_number=(result.get("card") or {}).get("approveNo") or result.get("approvalNumber", ""),
            status=result.get("status", ""),
            raw_response=result,
        )

    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        if self.is_local_reference(payment_id):
            # No paymentKey yet: the widget session was never approved.
            return GatewayResponse(success=True, transaction_id=payment_id, status="cancelled")
        ok, result = self._call("POST", f"/payments/{payment_id}/cancel", json={"cancelReason": reason or "cancel"})
        if not ok:
            return self._error(result, "CANCEL_ERROR")
        return GatewayResponse(
            success=True, transaction_id=payment_id, status=result.get("status", ""), raw_response=result
        )

    def refund(self, request: RefundRequest) -> GatewayResponse:
        body = {
            "cancelAmount": self.format_amount(request.amount, request.currency),
            "cancelReason": request.reason or "refund",
        }
        ok, result = self._call("POST", f"/payments/{request.transaction_id}/cancel", json=body)
        if not ok:
            return self._error(result, "REFUND_ERROR")
        cancels = result.get("cancels") or []
        return GatewayResponse(
            success=True,
            transaction_id=request.transaction_id,
            refund_id=cancels[-1].get("transactionKey", "") if cancels else "",
            status=result.get("status", ""),
            raw_response=result,
        )

    def get_status(self, transaction_id: str) -> GatewayResponse:
        ok, result = self._call("GET", f"/payments/{transaction_id}")
        if not ok:
            return self._error(result, "QUERY_ERROR")
        return GatewayResponse(
            success=True,
            transaction_id=result.get("paymentKey", transaction_id),
            approval_number=(result.get("card") or {}).get("approveNo", ""),
            status=result.get("status", ""),
            raw_response=result,
        )

    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        # Best-effort HMAC-SHA256 over the body with the configured webhook secret.
        if not self.webhook_secret:
            return False
        expected = hmac_sha256_hex(self.webhook_secret, canonical_body(payload, raw_body))
        return signature_matches(expected, signature)

    def receipt_fields(self, raw: dict) -> dict:
        currency = raw.get("currency") or ""
        amount = raw.get("totalAmount")
        return {
            "amount": self.parse_amount(amount, currency) if amount is not None and currency else None,
            "currency": currency,
            "method": raw.get("method") or "",
        }


# EOF
