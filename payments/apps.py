from django.apps import AppConfig, apps
from django.conf import settings


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    registry = None

    def ready(self):
        from .gateways.registry import build_registry

        self.registry = build_registry(
            getattr(settings, "PAYMENT_GATEWAYS", {}),
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
            test_mode=settings.PAYMENT_TEST_MODE,
        )


def get_registry():
    """The process-wide gateway registry built at startup."""
    return apps.get_app_config("payments").registry
