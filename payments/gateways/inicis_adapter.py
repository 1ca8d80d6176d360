"""KG Inicis standard-payment adapter.

Inicis is a form-post flow: ``initiate`` returns signed form fields for
``INIStdPay.jsp``; after authentication Inicis posts an ``authToken`` and an
``authUrl`` back to the shop, which ``confirm`` calls to approve.
Every server call is signed with SHA-256 over the sorted ``k=v`` pairs plus
the merchant sign key.
"""

import hashlib
from urllib.parse import urlparse

from common.exceptions import GatewayError
from django.utils import timezone

from .base import (
    GatewayAdapter,
    GatewayResponse,
    InitiationResult,
    PaymentRequest,
    RefundRequest,
    signature_matches,
)

TEST_URL = "https://stgstdpay.inicis.com"
LIVE_URL = "https://stdpay.inicis.com"

APPROVED = "0000"
API_OK = "00"


class InicisAdapter(GatewayAdapter):
    name = "inicis"
    receipt_prefix = "IN-"
    methods = ("Card", "DirectBank", "VBank", "HPP", "Culture", "HPMN", "BCSH", "POINT", "EasyPay")
    currencies = ("KRW",)

    def __init__(self, *, merchant_id: str, sign_key: str, **kwargs):
        if not merchant_id or not sign_key:
            raise GatewayError("Inicis merchant id and sign key are required", gateway=self.name)
        super().__init__(**kwargs)
        self.merchant_id = merchant_id
        self.sign_key = sign_key
        self.base_url = TEST_URL if self.test_mode else LIVE_URL

    def sign(self, params: dict) -> str:
        message = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha256(f"{message}{self.sign_key}".encode("utf-8")).hexdigest()

    @staticmethod
    def timestamp() -> str:
        return timezone.now().strftime("%Y%m%d%H%M%S")

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        oid = self.make_reference(request.order_id)
        amount = self.format_amount(request.amount, "KRW")
        timestamp = self.timestamp()
        form = {
            "mid": self.merchant_id,
            "oid": oid,
            "price": amount,
            "goodname": request.description or f"Order {request.order_id}",
            "buyername": request.customer_name,
            "buyeremail": request.customer_email,
            "buyertel": request.customer_phone,
            "timestamp": timestamp,
            "returnUrl": request.return_url,
            "closeUrl": request.cancel_url or request.return_url,
            "signature": self.sign({"oid": oid, "price": amount, "timestamp": timestamp}),
            "mKey": hashlib.sha256(self.sign_key.encode("utf-8")).hexdigest(),
        }
        return InitiationResult(
            payment_id=oid,
            session_data={"formUrl": f"{self.base_url}/stdpay/INIStdPay.jsp", "formData": form},
            expires_at=self.expiry(),
        )

    def _trusted_auth_url(self, url: str) -> bool:
        parsed = urlparse(url or "")
        host = parsed.hostname or ""
        return parsed.scheme == "https" and (host == "inicis.com" or host.endswith(".inicis.com"))

    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        auth_url = data.get("authUrl", "")
        auth_token = data.get("authToken", "")
        if not auth_token or not self._trusted_auth_url(auth_url):
            return GatewayResponse(
                success=False,
                error_code="INVALID_AUTH_RESULT",
                error_message="authToken and an Inicis authUrl are required",
            )
        timestamp = self.timestamp()
        form = {
            "mid": self.merchant_id,
            "authToken": auth_token,
            "timestamp": timestamp,
            "signature": self.sign({"authToken": auth_token, "timestamp": timestamp}),
            "format": "JSON",
        }
        result = self._json(self._request("POST", auth_url, data=form))
        if result.get("resultCode") == APPROVED:
            return GatewayResponse(
                success=True,
                transaction_id=result.get("tid", ""),
                approval_number=result.get("applNum") or result.get("authCode", ""),
                status=result.get("resultCode"),
                raw_response=result,
            )
        return GatewayResponse(
            success=False,
            error_code=result.get("resultCode") or "CONFIRM_ERROR",
            error_message=result.get("resultMsg") or "Inicis approval failed",
            raw_response=result,
        )

    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        # Unapproved Inicis transactions simply lapse.
        return GatewayResponse(success=True, transaction_id=payment_id, status="cancelled")

    def _api(self, path: str, params: dict) -> dict:
        timestamp = self.timestamp()
        form = {"mid": self.merchant_id, "timestamp": timestamp, **params}
        form["hashData"] = self.sign({"mid": self.merchant_id, "timestamp": timestamp, "tid": params["tid"]})
        return self._json(self._request("POST", f"{self.base_url}{path}", data=form))

    def refund(self, request: RefundRequest) -> GatewayResponse:
        result = self._api(
            "/api/refund.jsp",
            {
                "type": "Refund",
                "tid": request.transaction_id,
                "msg": request.reason or "refund",
                "price": self.format_amount(request.amount, "KRW"),
            },
        )
        if result.get("resultCode") == API_OK:
            return GatewayResponse(
                success=True,
                transaction_id=request.transaction_id,
                refund_id=result.get("cancelNum") or result.get("tid", ""),
                approval_number=result.get("cancelNum", ""),
                raw_response=result,
            )
        return GatewayResponse(
            success=False,
            error_code=result.get("resultCode") or "REFUND_ERROR",
            error_message=result.get("resultMsg") or "Inicis refund failed",
            raw_response=result,
        )

    def get_status(self, transaction_id: str) -> GatewayResponse:
        result = self._api("/api/inquire.jsp", {"type": "Query", "tid": transaction_id})
        if result.get("resultCode") == API_OK:
            return GatewayResponse(
                success=True,
                transaction_id=transaction_id,
                approval_number=result.get("applNum", ""),
                status=result.get("status", ""),
                raw_response=result,
            )
        return GatewayResponse(
            success=False,
            error_code=result.get("resultCode") or "QUERY_ERROR",
            error_message=result.get("resultMsg") or "Inicis query failed",
            raw_response=result,
        )

    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        if not isinstance(payload, dict):
            return False
        fields = {k: v for k, v in payload.items() if k not in ("signature", "hashData")}
        return signature_matches(self.sign(fields), signature)

    def receipt_fields(self, raw: dict) -> dict:
        price = raw.get("price") or raw.get("TotPrice")
        return {
            "amount": self.parse_amount(price, "KRW") if price else None,
            "currency": "KRW",
            "method": raw.get("payMethod", ""),
        }


# EOF
