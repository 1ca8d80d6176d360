"""Gateway adapter interface and the value objects exchanged with it.

Each provider is one ``GatewayAdapter`` subclass holding read-only
configuration. Adapters never touch local payment rows: they translate a
request into the provider's wire format and translate the answer back.

Two kinds of failure are kept apart. A network error or timeout raises
``GatewayTransportError``; a provider saying "no" (declined card, bad
amount, unknown key) comes back as ``GatewayResponse(success=False)``.
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import requests
from common.exceptions import GatewayError, GatewayTransportError
from django.utils import timezone

logger = logging.getLogger("commerce.payments")

ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)  # fmt: skip

REFERENCE_PREFIX = "order-"


@dataclass(frozen=True)
class PaymentRequest:
    order_id: int
    amount: Decimal
    currency: str
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    return_url: str = ""
    cancel_url: str = ""
    description: str = ""
    method: str = ""
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InitiationResult:
    """What the client needs to finish payment out-of-band.

    ``payment_id`` is the provider-side key later used by confirm and by
    webhook lookups. Redirect-style providers fill ``payment_url``; widget
    and form-post providers fill ``session_data``.
    """

    payment_id: str
    expires_at: datetime
    payment_url: str = ""
    session_data: dict = field(default_factory=dict)
    raw_response: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayResponse:
    success: bool
    transaction_id: str = ""
    approval_number: str = ""
    status: str = ""
    refund_id: str = ""
    error_code: str = ""
    error_message: str = ""
    raw_response: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundRequest:
    transaction_id: str
    amount: Decimal
    currency: str
    reason: str = ""


@dataclass(frozen=True)
class ReceiptLine:
    description: str
    quantity: int
    unit_price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class ReceiptDetails:
    """Local order data the provider does not know about."""

    items: tuple = ()
    customer_name: str = ""
    customer_email: str = ""
    amount: Decimal = Decimal("0.00")
    currency: str = ""
    method: str = ""


@dataclass(frozen=True)
class Receipt:
    receipt_number: str
    payment_id: str
    transaction_id: str
    amount: Decimal
    currency: str
    method: str
    approval_number: str
    issued_at: datetime
    customer_name: str = ""
    customer_email: str = ""
    items: tuple = ()

    def as_dict(self) -> dict:
        return {
            "receipt_number": self.receipt_number,
            "payment_id": self.payment_id,
            "transaction_id": self.transaction_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "method": self.method,
            "approval_number": self.approval_number,
            "issued_at": self.issued_at.isoformat(),
            "customer": {"name": self.customer_name, "email": self.customer_email},
            "items": [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": str(line.unit_price),
                    "amount": str(line.amount),
                }
                for line in self.items
            ],
        }


def signature_matches(expected: str, provided: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.strip().lower(), provided.strip().lower())


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def canonical_body(payload, raw_body: bytes | None = None) -> bytes:
    """Bytes to sign: the raw request body when available, else sorted JSON."""
    if raw_body is not None:
        return raw_body if isinstance(raw_body, bytes) else str(raw_body).encode("utf-8")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


class GatewayAdapter(ABC):
    """Uniform interface over one external payment provider."""

    name = ""
    receipt_prefix = "RC-"
    methods: tuple = ()
    currencies: tuple = ()
    session_ttl = timedelta(minutes=30)

    def __init__(self, *, test_mode: bool = True, timeout: float = 10.0, session=None):
        self.test_mode = test_mode
        self.timeout = timeout
        self.session = session or requests.Session()

    def __repr__(self) -> str:  # pragma: no cover
        return f"<{type(self).__name__} name={self.name} test_mode={self.test_mode}>"

    # -- capabilities -------------------------------------------------

    def supported_methods(self) -> list[str]:
        return list(self.methods)

    def supported_currencies(self) -> list[str]:
        return list(self.currencies)

    def format_amount(self, amount, currency: str) -> int:
        """Convert a decimal amount to the provider's integer representation.

        Zero-decimal currencies (KRW, JPY, ...) are whole units; everything
        else is minor units.
        """
        value = Decimal(str(amount))
        if currency.upper() in ZERO_DECIMAL_CURRENCIES:
            return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def parse_amount(self, value, currency: str) -> Decimal:
        """Inverse of ``format_amount``."""
        if currency.upper() in ZERO_DECIMAL_CURRENCIES:
            return Decimal(str(value)).quantize(Decimal("0.01"))
        return (Decimal(str(value)) / 100).quantize(Decimal("0.01"))

    def make_reference(self, order_id) -> str:
        """Provider-facing order key; unique per attempt so retries never collide."""
        return f"{REFERENCE_PREFIX}{order_id}-{uuid4().hex[:12]}"

    @staticmethod
    def is_local_reference(key: str) -> bool:
        return (key or "").startswith(REFERENCE_PREFIX)

    def expiry(self) -> datetime:
        return timezone.now() + self.session_ttl

    # -- provider operations --------------------------------------------

    @abstractmethod
    def initiate(self, request: PaymentRequest) -> InitiationResult:
        """Start a payment with the provider. Raises GatewayError on rejection."""

    @abstractmethod
    def confirm(self, payment_id: str, data: dict) -> GatewayResponse:
        """Finalize a payment after the customer returns from the provider."""

    @abstractmethod
    def cancel(self, payment_id: str, reason: str) -> GatewayResponse:
        """Cancel an unconfirmed payment. Best-effort."""

    @abstractmethod
    def refund(self, request: RefundRequest) -> GatewayResponse:
        """Refund (part of) a captured transaction."""

    @abstractmethod
    def get_status(self, transaction_id: str) -> GatewayResponse:
        """Ask the provider for the authoritative state of a transaction."""

    @abstractmethod
    def verify_webhook_signature(self, payload, signature: str, raw_body: bytes | None = None) -> bool:
        """Check an inbound webhook against the provider's signing scheme."""

    def receipt_fields(self, raw: dict) -> dict:
        """Pick amount/currency/method/approval number out of a status response.

        Only keys the provider actually reported are returned; the rest fall
        back to local payment data.
        """
        return {}

    def generate_receipt(self, payment_id: str, transaction_id: str, details: ReceiptDetails) -> Receipt:
        status = self.get_status(transaction_id)
        if not status.success:
            raise GatewayError(
                "Failed to get payment data for receipt",
                gateway=self.name,
                error_code=status.error_code,
            )
        fields = {
            "amount": details.amount,
            "currency": details.currency,
            "method": details.method,
            "approval_number": status.approval_number,
        }
        fields.update({k: v for k, v in self.receipt_fields(status.raw_response).items() if v not in (None, "")})
        return Receipt(
            receipt_number=f"{self.receipt_prefix}{transaction_id}",
            payment_id=payment_id,
            transaction_id=transaction_id,
            amount=Decimal(str(fields["amount"])),
            currency=str(fields["currency"]).upper(),
            method=str(fields["method"]),
            approval_number=str(fields["approval_number"] or ""),
            issued_at=timezone.now(),
            customer_name=details.customer_name,
            customer_email=details.customer_email,
            items=tuple(details.items),
        )

    # -- transport --------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            logger.warning("gateway.timeout", extra={"gateway": self.name, "url": url})
            raise GatewayTransportError(f"{self.name} timed out", gateway=self.name) from exc
        except requests.RequestException as exc:
            logger.warning("gateway.transport_error", extra={"gateway": self.name, "url": url, "error": str(exc)})
            raise GatewayTransportError(f"{self.name} is unreachable", gateway=self.name) from exc

    @staticmethod
    def _json(response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}
        return data if isinstance(data, dict) else {"data": data}


# EOF
