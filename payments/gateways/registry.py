"""Gateway name -> adapter lookup, populated once at startup."""

import logging

from common.exceptions import UnsupportedGatewayError

from .base import GatewayAdapter
from .inicis_adapter import InicisAdapter
from .kcp_adapter import KcpAdapter
from .paypal_adapter import PayPalAdapter
from .stripe_adapter import StripeAdapter
from .toss_adapter import TossPaymentsAdapter

logger = logging.getLogger("commerce.payments")

# Adapter class and the config key that must be present for it to register.
ADAPTERS = {
    "stripe": (StripeAdapter, "secret_key"),
    "toss_payments": (TossPaymentsAdapter, "secret_key"),
    "inicis": (InicisAdapter, "merchant_id"),
    "kcp": (KcpAdapter, "site_code"),
    "paypal": (PayPalAdapter, "client_id"),
}


class GatewayRegistry:
    def __init__(self, adapters: dict | None = None):
        self._adapters: dict[str, GatewayAdapter] = {}
        for name, adapter in (adapters or {}).items():
            self.register(name, adapter)

    def register(self, name: str, adapter: GatewayAdapter) -> None:
        self._adapters[name.lower()] = adapter

    def get(self, name: str) -> GatewayAdapter:
        try:
            return self._adapters[(name or "").lower()]
        except KeyError:
            raise UnsupportedGatewayError(f"Unsupported payment gateway: {name}", gateway=name)

    def supported(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, name) -> bool:
        return (name or "").lower() in self._adapters


def build_registry(config: dict, *, timeout: float = 10.0, test_mode: bool = True) -> GatewayRegistry:
    """Construct adapters for every configured gateway.

    Gateways whose required credential is blank are skipped, so a deployment
    only exposes the providers it has keys for.
    """
    registry = GatewayRegistry()
    for name, options in (config or {}).items():
        if name not in ADAPTERS:
            raise UnsupportedGatewayError(f"Unknown gateway in configuration: {name}", gateway=name)
        adapter_cls, required = ADAPTERS[name]
        if not options.get(required):
            logger.info("gateway.skipped", extra={"gateway": name, "missing": required})
            continue
        registry.register(name, adapter_cls(**options, test_mode=test_mode, timeout=timeout))
        logger.info("gateway.registered", extra={"gateway": name, "test_mode": test_mode})
    return registry


# EOF
