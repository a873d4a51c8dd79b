"""Webhook delivery (Discord-compatible embeds)."""

import httpx
from loguru import logger

from ..utils.helpers import utc_now
from .notifier import DeliveryResult, Notification

EMBED_COLOR = 0xB8860B


class WebhookAlerter:
    """Post notifications to a chat webhook."""

    def __init__(self, webhook_url: str):
        """Initialize webhook alerter.

        Args:
            webhook_url: Webhook URL
        """
        self.webhook_url = webhook_url

    def _create_embed(self, notification: Notification) -> dict:
        embed = {
            "title": notification.subject,
            "description": notification.text[:4000],
            "color": EMBED_COLOR,
            "footer": {"text": f"To: {notification.to} | NihontoWatch"},
            "timestamp": utc_now().isoformat(),
        }
        if notification.url:
            embed["url"] = notification.url
        return embed

    async def send(self, notification: Notification) -> DeliveryResult:
        """Post one notification.

        Returns:
            DeliveryResult with the HTTP error on failure
        """
        if not self.webhook_url:
            logger.warning("Webhook URL not configured")
            return DeliveryResult(success=False, error="webhook not configured")

        try:
            payload = {"embeds": [self._create_embed(notification)]}
            async with httpx.AsyncClient() as client:
                response = await client.post(self.webhook_url, json=payload, timeout=10)
                response.raise_for_status()

            logger.info(f"Webhook notification sent for {notification.to}")
            return DeliveryResult(success=True)

        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook notification: {e}")
            return DeliveryResult(success=False, error=str(e))
