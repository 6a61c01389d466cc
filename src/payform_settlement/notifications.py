"""Confirmation email delivery."""

import html
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Dict, Any, Optional

import httpx
from pydantic import BaseModel

from .settings import Settings, get_settings
from .settlement.errors import DownstreamUnavailable

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailSender(ABC):
    """Outbound mailer.

    Transient failures are raised (httpx transport errors or
    DownstreamUnavailable) so callers can retry; permanent rejections come
    back as an unsuccessful SendResult.
    """

    @abstractmethod
    async def send(self, to: str, template_data: Dict[str, Any]) -> SendResult:
        raise NotImplementedError


def render_confirmation_email(template_data: Dict[str, Any]) -> Dict[str, str]:
    """Build subject, plain text and HTML bodies of the payment confirmation."""
    e = {k: html.escape(str(v)) for k, v in template_data.items() if v is not None}
    product = template_data.get("product_name", "your order")
    subject = f"Payment confirmed: {product}"
    text = (
        f"Hi {template_data.get('payer_name') or 'there'},\n\n"
        f"We received your payment of {template_data.get('currency', 'INR')} "
        f"{template_data.get('amount')} for {product}.\n"
        f"Order ID: {template_data.get('order_id')}\n"
    )
    body = f"""<!DOCTYPE html>
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <h2>Payment confirmed</h2>
    <p>Hi {e.get('payer_name', 'there')},</p>
    <p>We received your payment of <strong>{e.get('currency', 'INR')} {e.get('amount', '')}</strong>
       for <strong>{e.get('product_name', 'your order')}</strong>.</p>
    <p>Order ID: <code>{e.get('order_id', '')}</code></p>
  </body>
</html>"""
    return {"subject": subject, "text": text, "html": body}


class LoggingEmailSender(EmailSender):
    """Sender used when no mail provider is configured: logs instead of sending."""

    def __init__(self):
        self.sent = []

    async def send(self, to: str, template_data: Dict[str, Any]) -> SendResult:
        message = render_confirmation_email(template_data)
        self.sent.append({"to": to, **message})
        logger.info(f"Email to {to} not sent (no mail provider configured): {message['subject']}")
        return SendResult(success=True, message_id=f"logged-{len(self.sent)}")


class SendGridEmailSender(EmailSender):
    """SendGrid v3 mail/send over httpx."""

    def __init__(
        self,
        api_key: str,
        mail_from: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.mail_from = mail_from
        self._transport = transport

    async def send(self, to: str, template_data: Dict[str, Any]) -> SendResult:
        message = render_confirmation_email(template_data)
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.mail_from, "name": "PayForm"},
            "subject": message["subject"],
            "content": [
                {"type": "text/plain", "value": message["text"]},
                {"type": "text/html", "value": message["html"]},
            ],
        }
        async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
            response = await client.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

        if response.status_code == 202:
            message_id = response.headers.get("x-message-id")
            logger.info(f"Confirmation email sent to {to} ({message_id})")
            return SendResult(success=True, message_id=message_id)

        if response.status_code == 429 or response.status_code >= 500:
            raise DownstreamUnavailable(f"SendGrid unavailable: {response.status_code}")

        logger.warning(f"SendGrid rejected email to {to}: {response.status_code}")
        return SendResult(success=False, error=f"SendGrid returned {response.status_code}")


def get_email_sender(settings: Optional[Settings] = None) -> EmailSender:
    """Return the SendGrid sender when configured, otherwise the logging sender."""
    settings = settings or get_settings()
    if settings.sendgrid_api_key:
        return SendGridEmailSender(settings.sendgrid_api_key, settings.mail_from)
    return LoggingEmailSender()


@lru_cache(maxsize=1)
def get_default_email_sender() -> EmailSender:
    """FastAPI dependency returning the process-wide sender."""
    return get_email_sender()
