"""NHN KCP adapter.

KCP's payplus plugin runs in the browser; ``initiate`` hands it the order
fields and ``confirm`` forwards the encrypted result (``enc_data``,
``enc_info``, ``tran_cd``) to the approval endpoint. KCP answers in plain
``key=value`` lines rather than JSON.
"""

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

TEST_API_URL = "https://stg-spl.kcp.co.kr"
LIVE_API_URL = "https://spl.kcp.co.kr"
TEST_JS_URL = "https://testpay.kcp.co.kr/plugin/payplus_web.jsp"
LIVE_JS_URL = "https://pay.kcp.co.kr/plugin/payplus_web.jsp"

APPROVED = "0000"


def parse_kcp_response(text: str) -> dict:
    result = {}
    for line in (text or "").splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() and value.strip():
            result[key.strip()] = value.strip()
    return result


class KcpAdapter(GatewayAdapter):
    name = "kcp"
    receipt_prefix = "KCP-"
    methods = ("CARD", "BANK", "VCNT", "MOBX", "TPNT", "GIFT")
    currencies = ("KRW", "USD")

    def __init__(self, *, site_code: str, site_key: str, **kwargs):
        if not site_code or not site_key:
            raise GatewayError("KCP site code and site key are required", gateway=self.name)
        super().__init__(**kwargs)
        self.site_code = site_code
        self.site_key = site_key
        self.api_url = TEST_API_URL if self.test_mode else LIVE_API_URL
        self.js_url = TEST_JS_URL if self.test_mode else LIVE_JS_URL

    @staticmethod
    def kcp_currency(currency: str) -> str:
        return "WON" if currency.upper() == "KRW" else currency.upper()

    def _post(self, path: str, form: dict) -> dict:
        response = self._request("POST", f"{self.api_url}/KCP_PAY_API/{path}", data=form)
        return parse_kcp_response(response.text)

    def _result(self, result: dict, default_code: str, *, approval_key: str = "app_no") -> GatewayResponse:
        if result.get("res_cd") == APPROVED:
            return GatewayResponse(
                success=True,
                transaction_id=result.get("tno", ""),
                approval_number=result.get(approval_key, ""),
                status=result.get("res_cd"),
                raw_response=result,
            )
        return GatewayResponse(
            success=False,
            error_code=result.get("res_cd") or default_code,
            error_message=result.get("res_msg") or "KCP request failed",
            raw_response=result,
        )

    def initiate(self, request: PaymentRequest) -> InitiationResult:
        order_ref = self.make_reference(request.order_id)
        form = {
            "site_cd": self.site_code,
            "ordr_idxx": order_ref,
            "good_name": request.description or f"Order {request.order_id}",
            "good_mny": self.format_amount(request.amount, request.currency),
            "buyr_name": request.customer_name,
            "buyr_mail": request.customer_email,
            "buyr_tel1": request.customer_phone,
            "buyr_tel2": request.customer_phone,
            "currency": self.kcp_currency(request.currency),
            "ret_url": request.return_url,
        }
        return InitiationResult(
            payment_id=order_ref,
            session_data={"jsUrl": self.js_url, "siteCd": self.site_code, "orderId": order_ref, "formData": form},
            expires_at=self.expiry(),
        )

    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        missing = [key for key in ("enc_data", "enc_info", "tran_cd") if not data.get(key)]
        if missing:
            return GatewayResponse(
                success=False,
                error_code="INVALID_AUTH_RESULT",
                error_message=f"Missing KCP fields: {', '.join(missing)}",
            )
        form = {
            "site_cd": self.site_code,
            "tran_cd": data["tran_cd"],
            "enc_data": data["enc_data"],
            "enc_info": data["enc_info"],
        }
        return self._result(self._post("pay_approval.jsp", form), "CONFIRM_ERROR")

    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        # KCP has no cancel before approval; the session expires on its own.
        return GatewayResponse(success=True, transaction_id=payment_id, status="cancelled")

    def refund(self, request: RefundRequest) -> GatewayResponse:
        form = {
            "site_cd": self.site_code,
            "tno": request.transaction_id,
            "mod_type": "STSC",
            "mod_mny": self.format_amount(request.amount, request.currency),
            "mod_desc": request.reason or "refund",
        }
        result = self._result(self._post("cancel.jsp", form), "REFUND_ERROR", approval_key="can_no")
        if not result.success:
            return result
        return GatewayResponse(
            success=True,
            transaction_id=result.transaction_id or request.transaction_id,
            approval_number=result.approval_number,
            refund_id=result.approval_number,
            status=result.status,
            raw_response=result.raw_response,
        )

    def get_status(self, transaction_id: str) -> GatewayResponse:
        return self._result(self._post("status.jsp", {"site_cd": self.site_code, "tno": transaction_id}), "QUERY_ERROR")

    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        # KCP has no published webhook signature; best-effort HMAC with the site key.
        expected = hmac_sha256_hex(self.site_key, canonical_body(payload, raw_body))
        return signature_matches(expected, signature)

    def receipt_fields(self, raw: dict) -> dict:
        currency = "KRW" if raw.get("currency") in (None, "", "WON", "410") else raw["currency"]
        amount = raw.get("amount") or raw.get("good_mny")
        return {
            "amount": self.parse_amount(amount, currency) if amount else None,
            "currency": currency,
            "method": raw.get("pay_method", ""),
        }


# EOF
