from pathlib import Path

from decouple import Csv, config

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Core security
SECRET_KEY = config("SECRET_KEY", default="dev-secret-key-change-me")

# Hosts and CORS
ALLOWED_HOSTS = config("ALLOWED_HOSTS", default="localhost,127.0.0.1", cast=Csv())
CORS_ALLOW_ALL_ORIGINS = config("CORS_ALLOW_ALL_ORIGINS", default=True, cast=bool)
CORS_ALLOWED_ORIGINS = config("CORS_ALLOWED_ORIGINS", default="", cast=Csv())
CSRF_TRUSTED_ORIGINS = config("CSRF_TRUSTED_ORIGINS", default="", cast=Csv())

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party
    "rest_framework",
    "django_filters",
    "drf_spectacular",
    "corsheaders",
    # Local
    "catalog",
    "inventory",
    "notifications",
    "orders",
    "payments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# Database
DB_ENGINE = config("DATABASE_ENGINE", default="sqlite")
if DB_ENGINE.lower() == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": config("DATABASE_NAME", default="postgres"),
            "USER": config("DATABASE_USER", default="postgres"),
            "PASSWORD": config("DATABASE_PASSWORD", default=""),
            "HOST": config("DATABASE_HOST", default="localhost"),
            "PORT": config("DATABASE_PORT", default="5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage",
    },
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Email (dev defaults to console backend; override via env for SMTP)
EMAIL_BACKEND = config(
    "EMAIL_BACKEND",
    default="django.core.mail.backends.console.EmailBackend",
)
EMAIL_HOST = config("EMAIL_HOST", default="")
EMAIL_PORT = config("EMAIL_PORT", default=587, cast=int)
EMAIL_HOST_USER = config("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = config("EMAIL_HOST_PASSWORD", default="")
EMAIL_USE_TLS = config("EMAIL_USE_TLS", default=True, cast=bool)
EMAIL_USE_SSL = config("EMAIL_USE_SSL", default=False, cast=bool)
DEFAULT_FROM_EMAIL = config("DEFAULT_FROM_EMAIL", default="Commerce <noreply@example.com>")
FRONTEND_URL = config("FRONTEND_URL", default="")

# DRF + Spectacular
REST_FRAMEWORK = {
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.ScopedRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "inventory": "120/min",
        "inventory_write": "60/min",
        "orders": "60/min",
        "orders_write": "30/min",
        "payments": "60/min",
        "payments_write": "30/min",
        "webhooks": "600/min",
    },
    "EXCEPTION_HANDLER": "common.exceptions.api_exception_handler",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Commerce Core API",
    "DESCRIPTION": "Payment, order and inventory orchestration API",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}

# Payment gateways. Only gateways with credentials are registered at startup.
PAYMENT_TEST_MODE = config("PAYMENT_TEST_MODE", default=True, cast=bool)
PAYMENT_GATEWAY_TIMEOUT = config("PAYMENT_GATEWAY_TIMEOUT", default=10.0, cast=float)
WEBHOOK_REQUIRE_SIGNATURE = config("WEBHOOK_REQUIRE_SIGNATURE", default=False, cast=bool)

PAYMENT_GATEWAYS = {
    "stripe": {
        "secret_key": config("STRIPE_SECRET_KEY", default=""),
        "publishable_key": config("STRIPE_PUBLISHABLE_KEY", default=""),
        "webhook_secret": config("STRIPE_WEBHOOK_SECRET", default=""),
    },
    "toss_payments": {
        "secret_key": config("TOSS_SECRET_KEY", default=""),
        "client_key": config("TOSS_CLIENT_KEY", default=""),
        "webhook_secret": config("TOSS_WEBHOOK_SECRET", default=""),
    },
    "inicis": {
        "merchant_id": config("INICIS_MID", default=""),
        "sign_key": config("INICIS_SIGN_KEY", default=""),
    },
    "kcp": {
        "site_code": config("KCP_SITE_CD", default=""),
        "site_key": config("KCP_SITE_KEY", default=""),
    },
    "paypal": {
        "client_id": config("PAYPAL_CLIENT_ID", default=""),
        "client_secret": config("PAYPAL_CLIENT_SECRET", default=""),
        "webhook_secret": config("PAYPAL_WEBHOOK_SECRET", default=""),
        "mode": config("PAYPAL_MODE", default="sandbox"),
    },
}

# Inventory
INVENTORY_REPORT_TOP_N = config("INVENTORY_REPORT_TOP_N", default=10, cast=int)

# Notifications
NOTIFICATION_CHANNELS = config("NOTIFICATION_CHANNELS", default="log,email", cast=Csv())
ADMIN_EMAIL_ADDRESSES = config("ADMIN_EMAIL_ADDRESSES", default="", cast=Csv())
INVENTORY_WEBHOOK_URL = config("INVENTORY_WEBHOOK_URL", default="")
NOTIFICATION_WEBHOOK_TIMEOUT = config("NOTIFICATION_WEBHOOK_TIMEOUT", default=5.0, cast=float)
