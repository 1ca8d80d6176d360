"""Payment lifecycle events.

Sent after the transaction that applied the transition commits, so
receivers never observe a state that was rolled back. Every signal carries
``payment`` and ``source`` ("api" or "webhook") keyword arguments; refund
and chargeback signals add ``amount`` / ``reason``.
"""

from django.dispatch import Signal

payment_initiated = Signal()
payment_completed = Signal()
payment_failed = Signal()
payment_cancelled = Signal()
payment_refunded = Signal()
chargeback_created = Signal()
