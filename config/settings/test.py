from decouple import config as _config

from .base import REST_FRAMEWORK as BASE_REST_FRAMEWORK
from .base import *  # noqa
from .base import BASE_DIR

DEBUG = False

# SQLite by default for speed; threaded race tests need DATABASE_ENGINE=postgres
if _config("DATABASE_ENGINE", default="sqlite").lower() != "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "test_db.sqlite3",
        }
    }

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

# Gateways are injected per test through an explicit registry
PAYMENT_GATEWAYS = {}
PAYMENT_TEST_MODE = True
WEBHOOK_REQUIRE_SIGNATURE = False

NOTIFICATION_CHANNELS = ["log"]
ADMIN_EMAIL_ADDRESSES = ["ops@example.com"]
INVENTORY_WEBHOOK_URL = ""

# Throttling off for tests to reduce flakiness
REST_FRAMEWORK = {**BASE_REST_FRAMEWORK}
REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
