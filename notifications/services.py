"""Notification dispatch for operational alerts.

Each notification type has a subject and body template under
``templates/notifications/``. A notification is delivered to every
configured channel; a failing channel does not stop the others, and the
caller gets a ``NotificationError`` naming the channels that failed.
"""

import logging
from dataclasses import dataclass, field

import requests
from common.choices import AlertType, NotificationChannel, NotificationType
from django.conf import settings
from django.core.mail import send_mail
from django.template.loader import render_to_string
from django.utils import timezone

logger = logging.getLogger("commerce.notifications")

TEMPLATE_BY_ALERT = {
    AlertType.LOW_STOCK: NotificationType.LOW_STOCK_ALERT,
    AlertType.CRITICAL_STOCK: NotificationType.CRITICAL_STOCK_ALERT,
    AlertType.OUT_OF_STOCK: NotificationType.OUT_OF_STOCK_ALERT,
}


class NotificationError(Exception):
    """Raised when one or more channels failed to deliver."""

    def __init__(self, failed_channels):
        self.failed_channels = list(failed_channels)
        super().__init__(f"Notification delivery failed on: {', '.join(self.failed_channels)}")


@dataclass(frozen=True)
class Notification:
    type: str
    priority: str
    context: dict = field(default_factory=dict)
    recipients: tuple = ()


class NotificationService:
    def __init__(self, *, channels=None, recipients=None, webhook_url=None, webhook_timeout=None, http=None):
        configured = settings.NOTIFICATION_CHANNELS if channels is None else channels
        self.channels = [str(c).strip().lower() for c in configured if str(c).strip()]
        self.recipients = tuple(settings.ADMIN_EMAIL_ADDRESSES if recipients is None else recipients)
        self.webhook_url = settings.INVENTORY_WEBHOOK_URL if webhook_url is None else webhook_url
        self.webhook_timeout = webhook_timeout or settings.NOTIFICATION_WEBHOOK_TIMEOUT
        self.http = http or requests
        self._senders = {
            NotificationChannel.EMAIL: self._send_email,
            NotificationChannel.WEBHOOK: self._send_webhook,
            NotificationChannel.LOG: self._send_log,
        }

    def render(self, notification_type: str, context: dict) -> tuple[str, str]:
        subject = render_to_string(f"notifications/{notification_type}_subject.txt", context).strip()
        body = render_to_string(f"notifications/{notification_type}_body.txt", context).strip()
        return subject, body

    def send(self, notification: Notification) -> list[str]:
        """Deliver to every configured channel; returns the channels that succeeded."""
        subject, body = self.render(notification.type, notification.context)
        delivered, failed = [], []
        for channel in self.channels:
            sender = self._senders.get(channel)
            if sender is None:
                logger.warning(
                    "notifications.unknown_channel",
                    extra={"event": "notifications.unknown_channel", "channel": channel},
                )
                continue
            try:
                sender(notification, subject, body)
            except Exception:
                logger.exception(
                    "notifications.channel_failed",
                    extra={
                        "event": "notifications.channel_failed",
                        "channel": channel,
                        "notification_type": notification.type,
                    },
                )
                failed.append(channel)
                continue
            delivered.append(channel)
        if failed:
            raise NotificationError(failed)
        logger.info(
            "notifications.sent",
            extra={
                "event": "notifications.sent",
                "notification_type": notification.type,
                "priority": notification.priority,
                "channels": delivered,
            },
        )
        return delivered

    def send_stock_alert(self, alert) -> list[str]:
        notification = Notification(
            type=TEMPLATE_BY_ALERT[AlertType(alert.alert_type)].value,
            priority=alert.priority,
            context=alert.as_context(),
            recipients=self.recipients,
        )
        return self.send(notification)

    def _send_email(self, notification: Notification, subject: str, body: str) -> None:
        if not notification.recipients:
            logger.warning(
                "notifications.no_recipients",
                extra={"event": "notifications.no_recipients", "notification_type": notification.type},
            )
            return
        send_mail(
            subject,
            body,
            getattr(settings, "DEFAULT_FROM_EMAIL", None),
            list(notification.recipients),
            fail_silently=False,
        )

    def _send_webhook(self, notification: Notification, subject: str, body: str) -> None:
        if not self.webhook_url:
            return
        resp = self.http.post(
            self.webhook_url,
            json={
                "type": notification.type,
                "priority": notification.priority,
                "subject": subject,
                "data": notification.context,
                "timestamp": timezone.now().isoformat(),
            },
            timeout=self.webhook_timeout,
        )
        resp.raise_for_status()

    def _send_log(self, notification: Notification, subject: str, body: str) -> None:
        logger.info(
            "notifications.in_app",
            extra={
                "event": "notifications.in_app",
                "notification_type": notification.type,
                "priority": notification.priority,
                "subject": subject,
                "recipients": list(notification.recipients),
            },
        )


def get_notification_service() -> NotificationService:
    """Build a service from current settings."""
    return NotificationService()
