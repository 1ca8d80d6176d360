"""Provider webhook reconciliation.

Each gateway's callback body is parsed once, at the boundary, into a typed
event (``StripeEvent``, ``TossEvent``, ...) which reduces itself to a
provider-neutral ``ReconciledEvent``. The reconciler then resolves the local
payment and applies the same transition functions the synchronous API uses.

Duplicate deliveries are no-ops because every transition re-checks the
payment's status under a row lock. Events for payments we cannot find are
logged and dropped: providers retry on their own and test traffic often
references payments that never existed here.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from common.exceptions import InvalidSignatureError, RefundExceedsCapturedAmountError
from django.conf import settings
from django.db.models import Q

from . import services
from .apps import get_registry
from .models import Payment, WebhookDelivery

logger = logging.getLogger("commerce.webhooks")

PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"
PAYMENT_CANCELLED = "payment_cancelled"
CHARGEBACK_CREATED = "chargeback_created"
REFUND_COMPLETED = "refund_completed"
RECURRING_PAYMENT_SUCCEEDED = "recurring_payment_succeeded"
IGNORED = "ignored"


@dataclass(frozen=True)
class RefundEntry:
    refund_id: str
    amount: Decimal | None
    reason: str = ""


@dataclass(frozen=True)
class ReconciledEvent:
    kind: str
    transaction_id: str = ""
    gateway_reference: str = ""
    local_payment_id: int | None = None
    refund_amount: Decimal | None = None
    refund_id: str = ""
    event_id: str = ""
    reason: str = ""
    error_code: str = ""
    error_message: str = ""
    refunds: tuple[RefundEntry, ...] = ()


@dataclass(frozen=True)
class WebhookResult:
    outcome: str
    kind: str = IGNORED
    payment_id: int | None = None
    detail: str = ""


def _local_id(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


# -- per-gateway payloads ------------------------------------------------------


@dataclass(frozen=True)
class StripeEvent:
    type: str
    id: str
    object: dict

    @classmethod
    def parse(cls, event: str, payload: dict) -> "StripeEvent":
        return cls(
            type=payload.get("type") or event or "",
            id=payload.get("id", ""),
            object=(payload.get("data") or {}).get("object") or {},
        )

    def reconcile(self, adapter) -> ReconciledEvent:
        obj = self.object
        metadata = obj.get("metadata") or {}
        local_id = _local_id(metadata.get("payment_id"))
        intent_id = obj.get("payment_intent") if isinstance(obj.get("payment_intent"), str) else ""

        if self.type == "payment_intent.succeeded":
            return ReconciledEvent(PAYMENT_SUCCEEDED, transaction_id=obj.get("id", ""), local_payment_id=local_id)
        if self.type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                return ReconciledEvent(IGNORED)
            return ReconciledEvent(
                PAYMENT_SUCCEEDED,
                transaction_id=intent_id,
                gateway_reference=obj.get("id", ""),
                local_payment_id=local_id,
            )
        if self.type == "payment_intent.payment_failed":
            error = obj.get("last_payment_error") or {}
            return ReconciledEvent(
                PAYMENT_FAILED,
                transaction_id=obj.get("id", ""),
                local_payment_id=local_id,
                error_code=error.get("code") or error.get("decline_code") or "payment_failed",
                error_message=error.get("message", ""),
            )
        if self.type == "payment_intent.canceled":
            return ReconciledEvent(
                PAYMENT_CANCELLED,
                transaction_id=obj.get("id", ""),
                local_payment_id=local_id,
                reason=obj.get("cancellation_reason") or "",
            )
        if self.type == "charge.refunded":
            currency = obj.get("currency", "")
            # Stripe lists refunds newest first; apply them in the order they happened
            refunds = tuple(
                RefundEntry(
                    refund_id=refund.get("id", ""),
                    amount=adapter.parse_amount(refund.get("amount", 0), refund.get("currency") or currency),
                    reason=refund.get("reason") or "",
                )
                for refund in reversed((obj.get("refunds") or {}).get("data") or [])
                if refund.get("status", "succeeded") == "succeeded"
            )
            if refunds:
                return ReconciledEvent(
                    REFUND_COMPLETED, transaction_id=intent_id, local_payment_id=local_id, refunds=refunds
                )
            if obj.get("refunded"):
                return ReconciledEvent(REFUND_COMPLETED, transaction_id=intent_id, local_payment_id=local_id)
            return ReconciledEvent(IGNORED)
        if self.type in ("refund.created", "refund.updated", "charge.refund.updated"):
            if obj.get("status") != "succeeded":
                return ReconciledEvent(IGNORED)
            return ReconciledEvent(
                REFUND_COMPLETED,
                transaction_id=intent_id,
                local_payment_id=local_id,
                refund_amount=adapter.parse_amount(obj.get("amount", 0), obj.get("currency", "")),
                refund_id=obj.get("id", ""),
                reason=obj.get("reason") or "",
            )
        if self.type == "charge.dispute.created":
            return ReconciledEvent(
                CHARGEBACK_CREATED,
                transaction_id=intent_id,
                event_id=obj.get("id", ""),
                reason=obj.get("reason") or "",
            )
        if self.type == "invoice.payment_succeeded":
            return ReconciledEvent(
                RECURRING_PAYMENT_SUCCEEDED,
                transaction_id=intent_id,
                gateway_reference=obj.get("subscription") or "",
                event_id=obj.get("id", ""),
                local_payment_id=local_id,
            )
        return ReconciledEvent(IGNORED)


@dataclass(frozen=True)
class TossEvent:
    event_type: str
    status: str
    payment_key: str
    order_id: str
    cancel_amount: object
    cancel_reason: str
    transaction_key: str
    currency: str

    @classmethod
    def parse(cls, event: str, payload: dict) -> "TossEvent":
        data = payload.get("data") or payload
        cancels = data.get("cancels") or []
        latest = cancels[-1] if cancels else {}
        return cls(
            event_type=payload.get("eventType") or event or "",
            status=data.get("status", ""),
            payment_key=data.get("paymentKey", ""),
            order_id=data.get("orderId", ""),
            cancel_amount=data.get("cancelAmount", latest.get("cancelAmount")),
            cancel_reason=data.get("cancelReason", latest.get("cancelReason", "")),
            transaction_key=latest.get("transactionKey", ""),
            currency=data.get("currency") or "KRW",
        )

    def reconcile(self, adapter) -> ReconciledEvent:
        keys = {"transaction_id": self.payment_key, "gateway_reference": self.order_id}
        kind = {
            "PAYMENT_COMPLETED": PAYMENT_SUCCEEDED,
            "PAYMENT_FAILED": PAYMENT_FAILED,
            "PAYMENT_CANCELLED": PAYMENT_CANCELLED,
        }.get(self.event_type)
        if kind is None and self.event_type == "PAYMENT_STATUS_CHANGED":
            kind = {
                "DONE": PAYMENT_SUCCEEDED,
                "ABORTED": PAYMENT_FAILED,
                "EXPIRED": PAYMENT_FAILED,
                "CANCELED": PAYMENT_CANCELLED,
                "PARTIAL_CANCELED": PAYMENT_CANCELLED,
            }.get(self.status)
        if kind is None:
            return ReconciledEvent(IGNORED)
        if kind == PAYMENT_CANCELLED:
            amount = self.cancel_amount
            return ReconciledEvent(
                kind,
                refund_amount=adapter.parse_amount(amount, self.currency) if amount not in (None, "") else None,
                refund_id=self.transaction_key,
                reason=self.cancel_reason,
                **keys,
            )
        if kind == PAYMENT_FAILED:
            return ReconciledEvent(kind, error_code=self.status or "PAYMENT_FAILED", **keys)
        return ReconciledEvent(kind, **keys)


@dataclass(frozen=True)
class InicisEvent:
    result_code: str
    result_message: str
    tid: str
    oid: str

    @classmethod
    def parse(cls, event: str, payload: dict) -> "InicisEvent":
        return cls(
            result_code=str(payload.get("resultCode", "")),
            result_message=payload.get("resultMsg", ""),
            tid=payload.get("tid", ""),
            oid=payload.get("oid") or payload.get("MOID", ""),
        )

    def reconcile(self, adapter) -> ReconciledEvent:
        if not self.result_code:
            return ReconciledEvent(IGNORED)
        if self.result_code == "0000":
            return ReconciledEvent(PAYMENT_SUCCEEDED, transaction_id=self.tid, gateway_reference=self.oid)
        return ReconciledEvent(
            PAYMENT_FAILED,
            transaction_id=self.tid,
            gateway_reference=self.oid,
            error_code=self.result_code,
            error_message=self.result_message,
        )


@dataclass(frozen=True)
class KcpEvent:
    res_cd: str
    res_msg: str
    tno: str
    ordr_idxx: str

    @classmethod
    def parse(cls, event: str, payload: dict) -> "KcpEvent":
        return cls(
            res_cd=str(payload.get("res_cd", "")),
            res_msg=payload.get("res_msg", ""),
            tno=payload.get("tno", ""),
            ordr_idxx=payload.get("ordr_idxx", ""),
        )

    def reconcile(self, adapter) -> ReconciledEvent:
        if not self.res_cd:
            return ReconciledEvent(IGNORED)
        if self.res_cd == "0000":
            return ReconciledEvent(PAYMENT_SUCCEEDED, transaction_id=self.tno, gateway_reference=self.ordr_idxx)
        return ReconciledEvent(
            PAYMENT_FAILED,
            transaction_id=self.tno,
            gateway_reference=self.ordr_idxx,
            error_code=self.res_cd,
            error_message=self.res_msg,
        )


@dataclass(frozen=True)
class PayPalEvent:
    event_type: str
    resource: dict

    @classmethod
    def parse(cls, event: str, payload: dict) -> "PayPalEvent":
        return cls(event_type=payload.get("event_type") or event or "", resource=payload.get("resource") or {})

    def _capture_id(self) -> str:
        for link in self.resource.get("links") or []:
            if link.get("rel") == "up" and "/captures/" in link.get("href", ""):
                return link["href"].rstrip("/").rsplit("/", 1)[-1]
        return ""

    def reconcile(self, adapter) -> ReconciledEvent:
        res = self.resource
        related = ((res.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id", "")
        local_id = _local_id(res.get("custom_id"))
        if self.event_type == "PAYMENT.CAPTURE.COMPLETED":
            return ReconciledEvent(
                PAYMENT_SUCCEEDED, transaction_id=res.get("id", ""), gateway_reference=related, local_payment_id=local_id
            )
        if self.event_type in ("PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"):
            details = res.get("status_details") or {}
            return ReconciledEvent(
                PAYMENT_FAILED,
                transaction_id=res.get("id", ""),
                gateway_reference=related,
                local_payment_id=local_id,
                error_code=details.get("reason") or res.get("status") or "DENIED",
            )
        if self.event_type == "PAYMENT.CAPTURE.REFUNDED":
            amount = (res.get("amount") or {}).get("value")
            return ReconciledEvent(
                REFUND_COMPLETED,
                transaction_id=self._capture_id() or res.get("id", ""),
                local_payment_id=local_id,
                refund_amount=adapter.parse_amount(amount, "") if amount else None,
                refund_id=res.get("id", ""),
                reason=res.get("note_to_payer", ""),
            )
        if self.event_type == "CUSTOMER.DISPUTE.CREATED":
            disputed = (res.get("disputed_transactions") or [{}])[0]
            return ReconciledEvent(
                CHARGEBACK_CREATED,
                transaction_id=disputed.get("seller_transaction_id", ""),
                event_id=res.get("dispute_id", ""),
                reason=res.get("reason", ""),
            )
        return ReconciledEvent(IGNORED)


EVENT_TYPES = {
    "stripe": StripeEvent,
    "toss_payments": TossEvent,
    "inicis": InicisEvent,
    "kcp": KcpEvent,
    "paypal": PayPalEvent,
}


# -- reconciler -------------------------------------------------------------------


def _event_name(payload) -> str:
    if not isinstance(payload, dict):
        return ""
    return payload.get("type") or payload.get("event_type") or payload.get("eventType") or ""


def find_payment(gateway: str, event: ReconciledEvent) -> Payment | None:
    payments = Payment.objects.filter(gateway=gateway)
    if event.local_payment_id is not None:
        payment = payments.filter(pk=event.local_payment_id).first()
        if payment is not None:
            return payment
    keys = [key for key in (event.transaction_id, event.gateway_reference) if key]
    if not keys:
        return None
    return payments.filter(Q(transaction_id__in=keys) | Q(gateway_reference__in=keys)).order_by("-id").first()


class WebhookReconciler:
    """Apply a provider callback to local payment state."""

    def __init__(self, registry=None, *, require_signature: bool | None = None):
        self.registry = registry or get_registry()
        if require_signature is None:
            require_signature = getattr(settings, "WEBHOOK_REQUIRE_SIGNATURE", False)
        self.require_signature = require_signature

    def _record(self, gateway, event, payload, signature, result: WebhookResult) -> WebhookResult:
        WebhookDelivery.objects.create(
            gateway=gateway,
            event=(event or "")[:100],
            payload=payload if isinstance(payload, dict) else {"raw": str(payload)},
            signature_present=bool(signature),
            outcome=result.outcome,
            payment_id=result.payment_id,
            detail=result.detail[:255],
        )
        return result

    def process(self, gateway: str, event: str, payload: dict, signature: str | None = None, raw_body=None):
        adapter = self.registry.get(gateway)
        name = adapter.name

        if signature or self.require_signature:
            if not signature or not adapter.verify_webhook_signature(payload, signature, raw_body):
                logger.warning("webhook.invalid_signature", extra={"gateway": name, "event": event})
                self._record(
                    name, event, payload, signature, WebhookResult(WebhookDelivery.OUTCOME_REJECTED, detail="signature")
                )
                raise InvalidSignatureError(gateway=name)

        parsed = EVENT_TYPES[name].parse(event, payload).reconcile(adapter)
        event = event or _event_name(payload) or parsed.kind
        logger.info("webhook.received", extra={"gateway": name, "event": event, "kind": parsed.kind})

        if parsed.kind == IGNORED:
            return self._record(name, event, payload, signature, WebhookResult(WebhookDelivery.OUTCOME_IGNORED))

        payment = find_payment(name, parsed)
        if payment is None:
            logger.warning(
                "webhook.payment_not_found",
                extra={
                    "gateway": name,
                    "event": event,
                    "transaction_id": parsed.transaction_id,
                    "gateway_reference": parsed.gateway_reference,
                },
            )
            return self._record(
                name,
                event,
                payload,
                signature,
                WebhookResult(WebhookDelivery.OUTCOME_UNRESOLVED, kind=parsed.kind, detail="payment not found"),
            )

        try:
            changed = self._apply(parsed, payment, payload)
        except RefundExceedsCapturedAmountError as exc:
            logger.warning(
                "webhook.refund_exceeds_balance",
                extra={"gateway": name, "payment_id": payment.pk, "detail": exc.message},
            )
            return self._record(
                name,
                event,
                payload,
                signature,
                WebhookResult(WebhookDelivery.OUTCOME_IGNORED, kind=parsed.kind, payment_id=payment.pk, detail=exc.message),
            )

        outcome = WebhookDelivery.OUTCOME_PROCESSED if changed else WebhookDelivery.OUTCOME_DUPLICATE
        if not changed:
            logger.info(
                "webhook.duplicate",
                extra={"gateway": name, "payment_id": payment.pk, "kind": parsed.kind, "status": payment.status},
            )
        return self._record(
            name, event, payload, signature, WebhookResult(outcome, kind=parsed.kind, payment_id=payment.pk)
        )

    def _apply(self, parsed: ReconciledEvent, payment: Payment, payload: dict) -> bool:
        source = services.SOURCE_WEBHOOK
        if parsed.kind == PAYMENT_SUCCEEDED:
            _, changed = services.complete_payment(
                payment.pk, transaction_id=parsed.transaction_id, raw_response=payload, source=source
            )
        elif parsed.kind == PAYMENT_FAILED:
            _, changed = services.fail_payment(
                payment.pk,
                error_code=parsed.error_code,
                error_message=parsed.error_message,
                raw_response=payload,
                source=source,
            )
        elif parsed.kind == PAYMENT_CANCELLED and payment.status not in Payment.REFUNDABLE_STATUSES:
            _, changed = services.cancel_payment_record(payment.pk, reason=parsed.reason, source=source)
        elif parsed.kind == REFUND_COMPLETED and parsed.refunds:
            changed = False
            # Refund ids already on the payment are skipped by apply_refund
            for refund in parsed.refunds:
                _, applied = services.apply_refund(
                    payment.pk,
                    amount=refund.amount,
                    reason=refund.reason,
                    refund_id=refund.refund_id,
                    raw_response=payload,
                    source=source,
                )
                changed = changed or applied
        elif parsed.kind in (PAYMENT_CANCELLED, REFUND_COMPLETED):
            _, changed = services.apply_refund(
                payment.pk,
                amount=parsed.refund_amount,
                reason=parsed.reason,
                refund_id=parsed.refund_id,
                raw_response=payload,
                source=source,
            )
        elif parsed.kind == CHARGEBACK_CREATED:
            _, changed = services.record_chargeback(
                payment.pk, dispute_id=parsed.event_id, reason=parsed.reason, source=source
            )
        elif parsed.kind == RECURRING_PAYMENT_SUCCEEDED:
            _, changed = services.record_recurring_payment(payment.pk, invoice_id=parsed.event_id)
        else:
            changed = False
        return changed


# EOF
