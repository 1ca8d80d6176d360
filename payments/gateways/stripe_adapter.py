"""Stripe adapter built on the official ``stripe`` SDK.

With a return URL the customer is sent to a hosted Checkout Session;
without one a bare PaymentIntent is created and its client secret handed
to the frontend (Stripe Elements). Either way the local payment id travels
in the intent's metadata so webhooks can find the row.
"""

import json
import logging
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

import stripe
from common.choices import RefundReason
from common.exceptions import GatewayError, GatewayTransportError

from .base import GatewayAdapter, GatewayResponse, InitiationResult, PaymentRequest, RefundRequest

logger = logging.getLogger("commerce.payments")

REFUND_REASONS = {
    RefundReason.DUPLICATE_PAYMENT: "duplicate",
    RefundReason.FRAUDULENT_TRANSACTION: "fraudulent",
}


def _plain(obj) -> dict:
    if obj is None:
        return {}
    return json.loads(json.dumps(obj, default=str))


class StripeAdapter(GatewayAdapter):
    name = "stripe"
    receipt_prefix = "ST-"
    methods = ("card", "alipay", "wechat_pay", "apple_pay", "google_pay", "link")
    currencies = ("USD", "EUR", "GBP", "JPY", "KRW", "CNY", "HKD", "SGD", "AUD", "CAD")
    session_ttl = timedelta(hours=24)

    def __init__(
        self,
        *,
        secret_key: str,
        publishable_key: str = "",
        webhook_secret: str = "",
        client=None,
        test_mode: bool = True,
        timeout: float = 10.0,
    ):
        if not secret_key and client is None:
            raise GatewayError("Stripe secret key is required", gateway=self.name)
        super().__init__(test_mode=test_mode, timeout=timeout)
        self.publishable_key = publishable_key
        self.webhook_secret = webhook_secret
        self.client = client or stripe.StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout),
        )

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        currency = request.currency.upper()
        amount = self.format_amount(request.amount, currency)
        metadata = {"order_id": str(request.order_id)}
        metadata.update({k: str(v) for k, v in request.metadata.items()})
        description = request.description or f"Order {request.order_id}"
        try:
            if request.return_url:
                params = {
                    "mode": "payment",
                    "line_items": [
                        {
                            "price_data": {
                                "currency": currency.lower(),
                                "product_data": {"name": description},
                                "unit_amount": amount,
                            },
                            "quantity": 1,
                        }
                    ],
                    "success_url": request.return_url,
                    "cancel_url": request.cancel_url or request.return_url,
                    "metadata": metadata,
                    "payment_intent_data": {"metadata": metadata},
                }
                if request.customer_email:
                    params["customer_email"] = request.customer_email
                session = self.client.checkout.sessions.create(params=params)
                expires_at = self.expiry()
                if session.get("expires_at"):
                    expires_at = datetime.fromtimestamp(int(session["expires_at"]), tz=dt_timezone.utc)
                return InitiationResult(
                    payment_id=session["id"],
                    payment_url=session.get("url") or "",
                    session_data={"sessionId": session["id"], "publishableKey": self.publishable_key},
                    expires_at=expires_at,
                    raw_response=_plain(session),
                )

            params = {
                "amount": amount,
                "currency": currency.lower(),
                "description": description,
                "metadata": metadata,
                "automatic_payment_methods": {"enabled": True},
            }
            if request.customer_email:
                params["receipt_email"] = request.customer_email
            intent = self.client.payment_intents.create(params=params)
        except stripe.APIConnectionError as exc:
            raise GatewayTransportError("Stripe is unreachable", gateway=self.name) from exc
        except stripe.StripeError as exc:
            logger.warning("gateway.initiate_rejected", extra={"gateway": self.name, "error": str(exc)})
            raise GatewayError(exc.user_message or "Failed to initiate payment", gateway=self.name) from exc

        return InitiationResult(
            payment_id=intent["id"],
            session_data={"clientSecret": intent.get("client_secret"), "publishableKey": self.publishable_key},
            expires_at=self.expiry(),
            raw_response=_plain(intent),
        )

    def _failure(self, exc, default_code: str) -> GatewayResponse:
        if isinstance(exc, stripe.APIConnectionError):
            raise GatewayTransportError("Stripe is unreachable", gateway=self.name) from exc
        return GatewayResponse(
            success=False,
            error_code=getattr(exc, "code", None) or default_code,
            error_message=getattr(exc, "user_message", None) or str(exc),
            raw_response=_plain(getattr(exc, "json_body", None)),
        )

    def _intent_response(self, intent) -> GatewayResponse:
        status = intent.get("status", "")
        if status == "succeeded":
            return GatewayResponse(
                success=True,
                transaction_id=intent["id"],
                approval_number=str(intent.get("latest_charge") or ""),
                status=status,
                raw_response=_plain(intent),
            )
        last_error = intent.get("last_payment_error") or {}
        return GatewayResponse(
            success=False,
            transaction_id=intent.get("id", ""),
            status=status,
            error_code=last_error.get("code") or "PAYMENT_NOT_COMPLETED",
            error_message=last_error.get("message") or f"Payment status: {status}",
            raw_response=_plain(intent),
        )

    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        intent_id = data.get("payment_intent_id") or data.get("transaction_id") or payment_id
        try:
            if intent_id.startswith("cs_"):
                session = self.client.checkout.sessions.retrieve(intent_id)
                intent_id = session.get("payment_intent")
                if not intent_id:
                    return GatewayResponse(
                        success=False,
                        status=session.get("status", ""),
                        error_code="PAYMENT_INCOMPLETE",
                        error_message="Checkout session has no payment yet",
                        raw_response=_plain(session),
                    )
                if not isinstance(intent_id, str):
                    intent_id = intent_id["id"]
            intent = self.client.payment_intents.retrieve(intent_id)
        except stripe.StripeError as exc:
            return self._failure(exc, "CONFIRM_ERROR")
        return self._intent_response(intent)

    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        try:
            if payment_id.startswith("cs_"):
                result = self.client.checkout.sessions.expire(payment_id)
            else:
                result = self.client.payment_intents.cancel(
                    payment_id, params={"cancellation_reason": "requested_by_customer"}
                )
        except stripe.StripeError as exc:
            return self._failure(exc, "CANCEL_ERROR")
        return GatewayResponse(
            success=True,
            transaction_id=result.get("id", payment_id),
            status=result.get("status", ""),
            raw_response=_plain(result),
        )

    def refund(self, request: RefundRequest) -> GatewayResponse:
        params = {
            "payment_intent": request.transaction_id,
            "amount": self.format_amount(request.amount, request.currency),
            "reason": REFUND_REASONS.get(request.reason, "requested_by_customer"),
        }
        try:
            refund = self.client.refunds.create(params=params)
        except stripe.StripeError as exc:
            return self._failure(exc, "REFUND_ERROR")
        status = refund.get("status", "")
        if status in ("succeeded", "pending"):
            return GatewayResponse(
                success=True,
                transaction_id=request.transaction_id,
                refund_id=refund["id"],
                status=status,
                raw_response=_plain(refund),
            )
        return GatewayResponse(
            success=False,
            refund_id=refund.get("id", ""),
            status=status,
            error_code=refund.get("failure_reason") or "REFUND_FAILED",
            error_message=f"Refund status: {status}",
            raw_response=_plain(refund),
        )

    def get_status(self, transaction_id: str) -> GatewayResponse:
        try:
            intent = self.client.payment_intents.retrieve(transaction_id)
        except stripe.StripeError as exc:
            return self._failure(exc, "QUERY_ERROR")
        return self._intent_response(intent)

    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        if not self.webhook_secret or not signature or raw_body is None:
            return False
        body = raw_body.decode("utf-8") if isinstance(raw_body, bytes) else raw_body
        try:
            stripe.Webhook.construct_event(body, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError):
            return False
        return True

    def receipt_fields(self, raw: dict) -> dict:
        currency = (raw.get("currency") or "").upper()
        amount = raw.get("amount_received") or raw.get("amount")
        methods = raw.get("payment_method_types") or []
        return {
            "amount": self.parse_amount(amount, currency) if amount and currency else None,
            "currency": currency,
            "method": methods[0] if methods else "",
        }


# EOF
