"""Delivery channels for user notifications."""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from loguru import logger


@dataclass
class Notification:
    """A rendered message for one recipient."""

    to: str
    subject: str
    html: str
    text: str
    url: Optional[str] = None


@dataclass
class DeliveryResult:
    success: bool
    error: Optional[str] = None


class Notifier(Protocol):
    async def send(self, notification: Notification) -> DeliveryResult: ...


class NullNotifier:
    """Used when no channel is configured. Every send fails."""

    async def send(self, notification: Notification) -> DeliveryResult:
        logger.warning(f"No notification channel configured, dropping message to {notification.to}")
        return DeliveryResult(success=False, error="no channel configured")


def build_notifier(alerts_config: Dict, settings=None) -> Notifier:
    """Pick a channel from config: email first, then webhook.

    Args:
        alerts_config: ``alerts`` config section as a dict
        settings: Environment settings overriding config credentials

    Returns:
        Notifier instance
    """
    from .email import EmailAlerter
    from .webhook import WebhookAlerter

    email = dict(alerts_config.get("email") or {})
    webhook = dict(alerts_config.get("webhook") or {})

    if settings is not None:
        if settings.smtp_host:
            email.update(
                enabled=True,
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port or email.get("smtp_port", 587),
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
            )
        if settings.email_from:
            email["from_address"] = settings.email_from
        if settings.webhook_url:
            webhook.update(enabled=True, url=settings.webhook_url)

    if email.get("enabled") and email.get("smtp_host"):
        return EmailAlerter(
            smtp_host=email["smtp_host"],
            smtp_port=int(email.get("smtp_port", 587)),
            smtp_user=email.get("smtp_user") or "",
            smtp_password=email.get("smtp_password") or "",
            from_address=email.get("from_address") or email.get("smtp_user") or "",
        )

    if webhook.get("enabled") and webhook.get("url"):
        return WebhookAlerter(webhook["url"])

    logger.warning("No email or webhook channel configured; notifications will not be delivered")
    return NullNotifier()
