"""Email delivery over SMTP."""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from loguru import logger

from .notifier import DeliveryResult, Notification


class EmailAlerter:
    """Send notifications via SMTP with STARTTLS."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
    ):
        """Initialize email alerter.

        Args:
            smtp_host: SMTP server host
            smtp_port: SMTP server port
            smtp_user: SMTP username
            smtp_password: SMTP password
            from_address: Sender address
        """
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address

    def _build_message(self, notification: Notification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.subject
        msg["From"] = self.from_address
        msg["To"] = notification.to
        if notification.url:
            msg["List-Unsubscribe"] = f"<{notification.url}>"

        msg.attach(MIMEText(notification.text, "plain"))
        msg.attach(MIMEText(notification.html, "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
            server.starttls()
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

    async def send(self, notification: Notification) -> DeliveryResult:
        """Send one email.

        Args:
            notification: Rendered notification

        Returns:
            DeliveryResult with the SMTP error on failure
        """
        if not notification.to:
            return DeliveryResult(success=False, error="missing recipient")

        try:
            msg = self._build_message(notification)
            await asyncio.to_thread(self._deliver, msg)
            logger.info(f"Email sent to {notification.to}: {notification.subject}")
            return DeliveryResult(success=True)

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {notification.to}: {e}")
            return DeliveryResult(success=False, error=str(e))
