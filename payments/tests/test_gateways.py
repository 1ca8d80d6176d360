import base64
import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest import mock

import pytest
import requests
import stripe
from common.exceptions import GatewayError, GatewayTransportError, UnsupportedGatewayError
from payments.gateways.base import PaymentRequest, ReceiptDetails, RefundRequest, hmac_sha256_hex
from payments.gateways.inicis_adapter import InicisAdapter
from payments.gateways.kcp_adapter import KcpAdapter, parse_kcp_response
from payments.gateways.paypal_adapter import PayPalAdapter
from payments.gateways.registry import GatewayRegistry, build_registry
from payments.gateways.stripe_adapter import StripeAdapter
from payments.gateways.toss_adapter import TossPaymentsAdapter

from .fakes import FakeGateway


def _response(data=None, ok=True, text=None):
    resp = mock.Mock(ok=ok, status_code=200 if ok else 400)
    if data is None:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = data
    resp.text = text if text is not None else json.dumps(data)
    return resp


def _session(*responses):
    session = mock.Mock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


def _request(**overrides):
    fields = {
        "order_id": 12,
        "amount": Decimal("15000.00"),
        "currency": "KRW",
        "customer_name": "Kim Minji",
        "customer_email": "minji@example.com",
        "return_url": "https://shop.example.com/pay/ok",
        "metadata": {"payment_id": 40},
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


# -- shared behaviour ----------------------------------------------------------


def test_amount_conversion_respects_zero_decimal_currencies():
    fake = FakeGateway()
    assert fake.format_amount(Decimal("15000"), "KRW") == 15000
    assert fake.format_amount(Decimal("12.345"), "usd") == 1235
    assert fake.format_amount("0.5", "JPY") == 1
    assert fake.parse_amount(1235, "USD") == Decimal("12.35")
    assert fake.parse_amount("15000", "KRW") == Decimal("15000.00")


def test_references_are_unique_per_attempt():
    fake = FakeGateway()
    first, second = fake.make_reference(12), fake.make_reference(12)
    assert first != second
    assert first.startswith("order-12-")
    assert fake.is_local_reference(first)
    assert not fake.is_local_reference("tgen_123")


def test_transport_errors_are_mapped():
    session = _session(requests.Timeout("slow"))
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)
    with pytest.raises(GatewayTransportError):
        adapter.get_status("tgen_1")

    session = _session(requests.ConnectionError("refused"))
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)
    with pytest.raises(GatewayTransportError):
        adapter.get_status("tgen_1")


# -- registry --------------------------------------------------------------------


def test_registry_lookup_is_case_insensitive():
    fake = FakeGateway()
    registry = GatewayRegistry({"toss_payments": fake})
    assert registry.get("TOSS_PAYMENTS") is fake
    assert "toss_payments" in registry
    assert registry.supported() == ["toss_payments"]
    with pytest.raises(UnsupportedGatewayError):
        registry.get("square")


def test_build_registry_skips_gateways_without_credentials():
    registry = build_registry(
        {
            "toss_payments": {"secret_key": "test_sk", "client_key": "test_ck"},
            "inicis": {"merchant_id": "INIpayTest", "sign_key": "key"},
            "kcp": {"site_code": "", "site_key": ""},
            "paypal": {"client_id": "", "client_secret": ""},
        },
        timeout=3.0,
        test_mode=True,
    )
    assert registry.supported() == ["inicis", "toss_payments"]
    assert registry.get("toss_payments").timeout == 3.0

    with pytest.raises(UnsupportedGatewayError):
        build_registry({"square": {"token": "x"}})


# -- TossPayments ----------------------------------------------------------------


def test_toss_initiate_builds_widget_session():
    adapter = TossPaymentsAdapter(secret_key="test_sk", client_key="test_ck", session=_session())
    result = adapter.initiate(_request(cancel_url=""))

    assert result.payment_id.startswith("order-12-")
    assert result.session_data["clientKey"] == "test_ck"
    assert result.session_data["amount"] == 15000
    assert result.session_data["orderId"] == result.payment_id
    assert result.session_data["failUrl"] == "https://shop.example.com/pay/ok"
    assert adapter.session.headers["Authorization"] == "Basic " + base64.b64encode(b"test_sk:").decode()


def test_toss_confirm_posts_payment_key_and_amount():
    session = _session(_response({"paymentKey": "tgen_1", "status": "DONE", "card": {"approveNo": "00012345"}}))
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)

    result = adapter.confirm(
        "order-12-abc", {"paymentKey": "tgen_1", "order_id": "order-12-abc", "amount": Decimal("15000"), "currency": "KRW"}
    )

    assert result.success
    assert (result.transaction_id, result.approval_number) == ("tgen_1", "00012345")
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "https://api.tosspayments.com/v1/payments/confirm")
    assert session.request.call_args.kwargs["json"] == {
        "paymentKey": "tgen_1",
        "orderId": "order-12-abc",
        "amount": 15000,
    }


def test_toss_confirm_failures():
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=_session())
    assert adapter.confirm("order-12-abc", {}).error_code == "MISSING_PAYMENT_KEY"

    session = _session(_response({"code": "REJECT_CARD_COMPANY", "message": "Declined"}, ok=False))
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)
    result = adapter.confirm("order-12-abc", {"paymentKey": "tgen_1", "amount": 100, "currency": "KRW"})
    assert not result.success
    assert (result.error_code, result.error_message) == ("REJECT_CARD_COMPANY", "Declined")


def test_toss_cancel_and_refund():
    session = _session(
        _response({"status": "CANCELED"}),
        _response({"status": "PARTIAL_CANCELED", "cancels": [{"transactionKey": "tk_1"}, {"transactionKey": "tk_2"}]}),
    )
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)

    # No paymentKey yet: nothing to cancel upstream
    assert adapter.cancel("order-12-abc", "customer_request").success
    assert session.request.call_count == 0

    assert adapter.cancel("tgen_1", "customer_request").status == "CANCELED"
    refund = adapter.refund(RefundRequest("tgen_1", Decimal("3000"), "KRW", "product_issue"))
    assert refund.refund_id == "tk_2"
    assert session.request.call_args.kwargs["json"] == {"cancelAmount": 3000, "cancelReason": "product_issue"}


def test_toss_webhook_signature():
    adapter = TossPaymentsAdapter(secret_key="test_sk", webhook_secret="whsec", session=_session())
    body = b'{"eventType":"PAYMENT_STATUS_CHANGED"}'
    good = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
    assert adapter.verify_webhook_signature({}, good, body)
    assert not adapter.verify_webhook_signature({}, "0" * 64, body)
    assert not TossPaymentsAdapter(secret_key="test_sk", session=_session()).verify_webhook_signature({}, good, body)


def test_toss_receipt_prefers_provider_values():
    session = _session(
        _response({"paymentKey": "tgen_1", "status": "DONE", "totalAmount": 15000, "currency": "KRW", "method": "카드"})
    )
    adapter = TossPaymentsAdapter(secret_key="test_sk", session=session)
    receipt = adapter.generate_receipt(
        "order-12-abc", "tgen_1", ReceiptDetails(amount=Decimal("1.00"), currency="KRW", method="card")
    )
    assert receipt.receipt_number == "TP-tgen_1"
    assert receipt.amount == Decimal("15000.00")
    assert receipt.method == "카드"


def test_missing_credentials_are_rejected():
    with pytest.raises(GatewayError):
        TossPaymentsAdapter(secret_key="")
    with pytest.raises(GatewayError):
        InicisAdapter(merchant_id="INIpayTest", sign_key="")
    with pytest.raises(GatewayError):
        KcpAdapter(site_code="", site_key="k")
    with pytest.raises(GatewayError):
        PayPalAdapter(client_id="id", client_secret="")
    with pytest.raises(GatewayError):
        StripeAdapter(secret_key="")


# -- Stripe --------------------------------------------------------------------------


def test_stripe_initiate_checkout_session():
    client = mock.Mock()
    client.checkout.sessions.create.return_value = {
        "id": "cs_test_1",
        "url": "https://checkout.stripe.com/c/pay/cs_test_1",
        "expires_at": 1767225600,
    }
    adapter = StripeAdapter(secret_key="sk_test", publishable_key="pk_test", client=client)

    result = adapter.initiate(_request(currency="USD", amount=Decimal("25.50")))

    params = client.checkout.sessions.create.call_args.kwargs["params"]
    assert params["line_items"][0]["price_data"]["unit_amount"] == 2550
    assert params["line_items"][0]["price_data"]["currency"] == "usd"
    assert params["metadata"] == {"order_id": "12", "payment_id": "40"}
    assert params["payment_intent_data"]["metadata"]["payment_id"] == "40"
    assert params["customer_email"] == "minji@example.com"
    assert result.payment_id == "cs_test_1"
    assert result.payment_url.endswith("cs_test_1")
    assert result.expires_at.timestamp() == 1767225600


def test_stripe_initiate_payment_intent_without_return_url():
    client = mock.Mock()
    client.payment_intents.create.return_value = {"id": "pi_1", "client_secret": "pi_1_secret"}
    adapter = StripeAdapter(secret_key="sk_test", publishable_key="pk_test", client=client)

    result = adapter.initiate(_request(return_url=""))

    params = client.payment_intents.create.call_args.kwargs["params"]
    assert params["amount"] == 15000
    assert params["currency"] == "krw"
    assert result.session_data == {"clientSecret": "pi_1_secret", "publishableKey": "pk_test"}


def test_stripe_initiate_errors():
    client = mock.Mock()
    client.payment_intents.create.side_effect = stripe.APIConnectionError("network down")
    adapter = StripeAdapter(secret_key="sk_test", client=client)
    with pytest.raises(GatewayTransportError):
        adapter.initiate(_request(return_url=""))

    client.payment_intents.create.side_effect = stripe.InvalidRequestError("Amount too small", "amount")
    with pytest.raises(GatewayError):
        adapter.initiate(_request(return_url=""))


def test_stripe_confirm_outcomes():
    client = mock.Mock()
    adapter = StripeAdapter(secret_key="sk_test", client=client)

    client.payment_intents.retrieve.return_value = {"id": "pi_1", "status": "succeeded", "latest_charge": "ch_1"}
    ok = adapter.confirm("pi_1", {})
    assert (ok.success, ok.transaction_id, ok.approval_number) == (True, "pi_1", "ch_1")

    client.payment_intents.retrieve.return_value = {
        "id": "pi_1",
        "status": "requires_payment_method",
        "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
    }
    declined = adapter.confirm("pi_1", {})
    assert (declined.success, declined.error_code) == (False, "card_declined")

    client.checkout.sessions.retrieve.return_value = {"id": "cs_1", "status": "open", "payment_intent": None}
    assert adapter.confirm("cs_1", {}).error_code == "PAYMENT_INCOMPLETE"

    client.checkout.sessions.retrieve.return_value = {"id": "cs_1", "payment_intent": "pi_1"}
    client.payment_intents.retrieve.return_value = {"id": "pi_1", "status": "succeeded"}
    assert adapter.confirm("cs_1", {}).success
    client.payment_intents.retrieve.assert_called_with("pi_1")


def test_stripe_cancel_and_refund():
    client = mock.Mock()
    client.payment_intents.cancel.return_value = {"id": "pi_1", "status": "canceled"}
    client.checkout.sessions.expire.return_value = {"id": "cs_1", "status": "expired"}
    client.refunds.create.return_value = {"id": "re_1", "status": "succeeded"}
    adapter = StripeAdapter(secret_key="sk_test", client=client)

    assert adapter.cancel("pi_1", "customer_request").status == "canceled"
    adapter.cancel("cs_1", "")
    client.checkout.sessions.expire.assert_called_once_with("cs_1")

    refund = adapter.refund(RefundRequest("pi_1", Decimal("10.00"), "USD", "duplicate_payment"))
    assert (refund.success, refund.refund_id) == (True, "re_1")
    assert client.refunds.create.call_args.kwargs["params"] == {
        "payment_intent": "pi_1",
        "amount": 1000,
        "reason": "duplicate",
    }

    client.refunds.create.return_value = {"id": "re_2", "status": "failed", "failure_reason": "expired_or_canceled_card"}
    failed = adapter.refund(RefundRequest("pi_1", Decimal("1.00"), "USD"))
    assert (failed.success, failed.error_code) == (False, "expired_or_canceled_card")


def test_stripe_webhook_signature():
    adapter = StripeAdapter(secret_key="sk_test", webhook_secret="whsec_test", client=mock.Mock())
    body = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded"})
    timestamp = int(time.time())
    digest = hmac.new(b"whsec_test", f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()

    assert adapter.verify_webhook_signature({}, f"t={timestamp},v1={digest}", body.encode())
    assert not adapter.verify_webhook_signature({}, f"t={timestamp},v1={'0' * 64}", body.encode())
    assert not adapter.verify_webhook_signature({}, f"t={timestamp},v1={digest}", None)


# -- Inicis --------------------------------------------------------------------------


def test_inicis_initiate_signs_form():
    adapter = InicisAdapter(merchant_id="INIpayTest", sign_key="signkey", session=_session())
    with mock.patch.object(InicisAdapter, "timestamp", return_value="20250101120000"):
        result = adapter.initiate(_request())

    form = result.session_data["formData"]
    assert result.session_data["formUrl"] == "https://stgstdpay.inicis.com/stdpay/INIStdPay.jsp"
    assert form["oid"] == result.payment_id
    assert form["price"] == 15000
    expected = hashlib.sha256(
        f"oid={result.payment_id}&price=15000&timestamp=20250101120000signkey".encode()
    ).hexdigest()
    assert form["signature"] == expected


def test_inicis_confirm_requires_trusted_auth_url():
    session = _session(_response({"resultCode": "0000", "tid": "StdpayCARD123", "applNum": "30012345"}))
    adapter = InicisAdapter(merchant_id="INIpayTest", sign_key="signkey", session=session)

    bad = adapter.confirm("order-1", {"authToken": "tok", "authUrl": "https://evil.example.com/approve"})
    assert bad.error_code == "INVALID_AUTH_RESULT"
    assert session.request.call_count == 0

    ok = adapter.confirm("order-1", {"authToken": "tok", "authUrl": "https://fcstdpay.inicis.com/api/payAuth"})
    assert (ok.success, ok.transaction_id, ok.approval_number) == (True, "StdpayCARD123", "30012345")


def test_inicis_refund_and_signature():
    session = _session(
        _response({"resultCode": "00", "cancelNum": "C1"}),
        _response({"resultCode": "01", "resultMsg": "Already cancelled"}),
    )
    adapter = InicisAdapter(merchant_id="INIpayTest", sign_key="signkey", session=session)

    refund = adapter.refund(RefundRequest("StdpayCARD123", Decimal("5000"), "KRW"))
    assert (refund.success, refund.refund_id) == (True, "C1")
    assert session.request.call_args.kwargs["data"]["price"] == 5000

    failed = adapter.refund(RefundRequest("StdpayCARD123", Decimal("5000"), "KRW"))
    assert (failed.success, failed.error_code) == (False, "01")

    payload = {"resultCode": "0000", "tid": "StdpayCARD123", "oid": "order-1"}
    signature = adapter.sign(payload)
    assert adapter.verify_webhook_signature({**payload, "signature": signature}, signature)
    assert not adapter.verify_webhook_signature(payload, "bad")


# -- KCP -------------------------------------------------------------------------------


def test_parse_kcp_response():
    assert parse_kcp_response("res_cd=0000\nres_msg=OK\ntno=2025\n\njunk\n") == {
        "res_cd": "0000",
        "res_msg": "OK",
        "tno": "2025",
    }


def test_kcp_flow():
    session = _session(
        _response(text="res_cd=0000\ntno=20250101\napp_no=A1\n"),
        _response(text="res_cd=0000\ntno=20250101\ncan_no=CN1\n"),
    )
    adapter = KcpAdapter(site_code="T0000", site_key="key", session=session)

    init = adapter.initiate(_request())
    assert init.session_data["formData"]["currency"] == "WON"
    assert init.session_data["formData"]["good_mny"] == 15000

    assert adapter.confirm(init.payment_id, {"enc_data": "x"}).error_code == "INVALID_AUTH_RESULT"
    ok = adapter.confirm(init.payment_id, {"enc_data": "x", "enc_info": "y", "tran_cd": "00100000"})
    assert (ok.transaction_id, ok.approval_number) == ("20250101", "A1")

    refund = adapter.refund(RefundRequest("20250101", Decimal("15000"), "KRW"))
    assert (refund.success, refund.refund_id) == (True, "CN1")
    assert session.request.call_args.kwargs["data"]["mod_type"] == "STSC"


def test_kcp_webhook_signature():
    adapter = KcpAdapter(site_code="T0000", site_key="key", session=_session())
    body = b"res_cd=0000&tno=2025"
    assert adapter.verify_webhook_signature({}, hmac_sha256_hex("key", body), body)
    assert not adapter.verify_webhook_signature({}, "", body)


# -- PayPal ------------------------------------------------------------------------------


def test_paypal_token_is_cached():
    session = _session(
        _response({"access_token": "A21", "expires_in": 32400}),
        _response({"status": "COMPLETED", "id": "3C6"}),
        _response({"status": "COMPLETED", "id": "3C6"}),
    )
    adapter = PayPalAdapter(client_id="cid", client_secret="secret", session=session)

    adapter.get_status("3C6")
    adapter.get_status("3C6")

    assert session.request.call_count == 3
    token_call = session.request.call_args_list[0]
    assert token_call.args[1] == "https://api-m.sandbox.paypal.com/v1/oauth2/token"
    assert token_call.kwargs["auth"] == ("cid", "secret")
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer A21"


def test_paypal_initiate_confirm_refund():
    order = {
        "id": "5O1",
        "links": [{"rel": "self", "href": "x"}, {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=5O1"}],
    }
    captured = {"id": "5O1", "status": "COMPLETED", "purchase_units": [{"payments": {"captures": [{"id": "3C6"}]}}]}
    session = _session(
        _response({"access_token": "A21", "expires_in": 32400}),
        _response(order),
        _response(captured),
        _response({"id": "1Y1", "status": "COMPLETED"}),
    )
    adapter = PayPalAdapter(client_id="cid", client_secret="secret", session=session)

    init = adapter.initiate(_request(currency="USD", amount=Decimal("25.5")))
    unit = session.request.call_args.kwargs["json"]["purchase_units"][0]
    assert unit["amount"] == {"currency_code": "USD", "value": "25.50"}
    assert unit["custom_id"] == "40"
    assert (init.payment_id, init.payment_url) == ("5O1", order["links"][1]["href"])

    confirmed = adapter.confirm("5O1", {})
    assert (confirmed.transaction_id, confirmed.approval_number) == ("3C6", "5O1")

    refund = adapter.refund(RefundRequest("3C6", Decimal("1000"), "JPY"))
    assert refund.refund_id == "1Y1"
    assert session.request.call_args.kwargs["json"]["amount"]["value"] == "1000"


def test_paypal_initiate_rejection_and_auth_failure():
    session = _session(
        _response({"access_token": "A21", "expires_in": 32400}),
        _response({"name": "INVALID_REQUEST", "message": "Request is not well-formed"}, ok=False),
    )
    adapter = PayPalAdapter(client_id="cid", client_secret="secret", session=session)
    with pytest.raises(GatewayError):
        adapter.initiate(_request(currency="USD"))

    adapter = PayPalAdapter(
        client_id="cid", client_secret="wrong", session=_session(_response({"error": "invalid_client"}, ok=False))
    )
    with pytest.raises(GatewayError):
        adapter.get_status("3C6")


# EOF
