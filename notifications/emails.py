"""Customer-facing emails.

Uses Django's email backend, with links composed from FRONTEND_URL.
"""

from django.conf import settings
from django.core.mail import send_mail


def send_payment_confirmation_email(payment) -> None:
    """Send a payment confirmation email to the order's customer.

    Includes a link to view the order on the frontend using `FRONTEND_URL`.
    Silently no-ops if the order has no email.
    """
    order = payment.order
    to_email = order.customer_email
    if not to_email:
        return

    reference = order.number or order.id
    subject = f"Payment received for order {reference}"
    frontend = getattr(settings, "FRONTEND_URL", "")
    order_url = f"{frontend.rstrip('/')}/orders/{order.id}" if frontend else ""

    lines = [
        "Thank you for your purchase!",
        "",
        f"Order: {reference}",
        f"Amount: {payment.amount} {payment.currency}",
        f"Paid via: {payment.get_gateway_display()}",
    ]
    if payment.transaction_id:
        lines.append(f"Transaction: {payment.transaction_id}")
    if order_url:
        lines += ["", f"You can view your order here: {order_url}"]

    send_mail(
        subject,
        "\n".join(lines) + "\n",
        getattr(settings, "DEFAULT_FROM_EMAIL", None),
        [to_email],
        fail_silently=True,
    )
