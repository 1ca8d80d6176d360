"""Shared enumerations and choices used across apps."""

from django.db import models


class MovementType(models.TextChoices):
    SALE = "sale", "Sale"
    PURCHASE = "purchase", "Purchase"
    ADJUSTMENT = "adjustment", "Adjustment"
    RETURN = "return", "Return"
    DAMAGE = "damage", "Damage"
    RESTOCK = "restock", "Restock"


class OrderStatus(models.TextChoices):
    """Lifecycle statuses for orders."""

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"


class PaymentStatus(models.TextChoices):
    """Lifecycle statuses for payments."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"


class GatewayName(models.TextChoices):
    STRIPE = "stripe", "Stripe"
    TOSS_PAYMENTS = "toss_payments", "TossPayments"
    INICIS = "inicis", "Inicis"
    KCP = "kcp", "KCP"
    PAYPAL = "paypal", "PayPal"


class PaymentMethod(models.TextChoices):
    CARD = "card", "Card"
    BANK_TRANSFER = "bank_transfer", "Bank transfer"
    VIRTUAL_ACCOUNT = "virtual_account", "Virtual account"
    MOBILE = "mobile", "Mobile"
    WALLET = "wallet", "Wallet"
    PAYPAL = "paypal", "PayPal"


class CancelReason(models.TextChoices):
    CUSTOMER_REQUEST = "customer_request", "Customer request"
    FRAUD_DETECTED = "fraud_detected", "Fraud detected"
    INSUFFICIENT_FUNDS = "insufficient_funds", "Insufficient funds"
    TECHNICAL_ERROR = "technical_error", "Technical error"
    OTHER = "other", "Other"


class RefundReason(models.TextChoices):
    CUSTOMER_REQUEST = "customer_request", "Customer request"
    DUPLICATE_PAYMENT = "duplicate_payment", "Duplicate payment"
    FRAUDULENT_TRANSACTION = "fraudulent_transaction", "Fraudulent transaction"
    PRODUCT_ISSUE = "product_issue", "Product issue"
    OTHER = "other", "Other"


class AlertType(models.TextChoices):
    LOW_STOCK = "low_stock", "Low stock"
    CRITICAL_STOCK = "critical_stock", "Critical stock"
    OUT_OF_STOCK = "out_of_stock", "Out of stock"


class AlertPriority(models.TextChoices):
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class NotificationType(models.TextChoices):
    LOW_STOCK_ALERT = "low_stock_alert", "Low stock alert"
    CRITICAL_STOCK_ALERT = "critical_stock_alert", "Critical stock alert"
    OUT_OF_STOCK_ALERT = "out_of_stock_alert", "Out of stock alert"


class NotificationChannel(models.TextChoices):
    EMAIL = "email", "Email"
    WEBHOOK = "webhook", "Webhook"
    LOG = "log", "Log / in-app"
