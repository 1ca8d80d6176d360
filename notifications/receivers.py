"""Signal receivers wiring payment events to customer notifications."""

from django.dispatch import receiver
from payments.signals import payment_completed

from .emails import send_payment_confirmation_email


@receiver(payment_completed, dispatch_uid="notifications.payment_confirmation_email")
def on_payment_completed(sender, payment, **kwargs):
    send_payment_confirmation_email(payment)
