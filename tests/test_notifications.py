"""Tests for confirmation email delivery."""

import json

import httpx
import pytest

from payform_settlement.notifications import (
    LoggingEmailSender,
    SendGridEmailSender,
    SENDGRID_URL,
    get_email_sender,
    render_confirmation_email,
)
from payform_settlement.settings import Settings
from payform_settlement.settlement.errors import DownstreamUnavailable

TEMPLATE_DATA = {
    "order_id": "payform_1",
    "product_name": "Workshop ticket",
    "amount": "1000.00",
    "currency": "INR",
    "payer_name": "Asha",
    "form_id": "form_1",
}


class TestRenderConfirmationEmail:
    def test_contents(self):
        message = render_confirmation_email(TEMPLATE_DATA)

        assert message["subject"] == "Payment confirmed: Workshop ticket"
        assert "INR 1000.00" in message["text"]
        assert "payform_1" in message["html"]
        assert "Hi Asha" in message["html"]

    def test_html_is_escaped(self):
        message = render_confirmation_email(dict(TEMPLATE_DATA, product_name="<script>alert(1)</script>"))

        assert "<script>" not in message["html"]
        assert "&lt;script&gt;" in message["html"]

    def test_missing_payer_name(self):
        message = render_confirmation_email(dict(TEMPLATE_DATA, payer_name=None))

        assert "Hi there" in message["text"]
        assert "Hi there" in message["html"]


class TestLoggingEmailSender:
    async def test_records_messages(self):
        sender = LoggingEmailSender()

        result = await sender.send("payer@example.com", TEMPLATE_DATA)

        assert result.success
        assert result.message_id == "logged-1"
        assert sender.sent[0]["to"] == "payer@example.com"


class TestSendGridEmailSender:
    """SendGrid over a mocked transport."""

    def sender(self, handler) -> SendGridEmailSender:
        return SendGridEmailSender("SG.key", "noreply@payform.com", transport=httpx.MockTransport(handler))

    async def test_accepted(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, headers={"x-message-id": "msg_1"})

        result = await self.sender(handler).send("payer@example.com", TEMPLATE_DATA)

        assert result.success
        assert result.message_id == "msg_1"
        assert seen["url"] == SENDGRID_URL
        assert seen["auth"] == "Bearer SG.key"
        assert seen["body"]["personalizations"][0]["to"] == [{"email": "payer@example.com"}]
        assert seen["body"]["from"]["email"] == "noreply@payform.com"

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_transient_failures_raise(self, status_code):
        sender = self.sender(lambda request: httpx.Response(status_code))

        with pytest.raises(DownstreamUnavailable):
            await sender.send("payer@example.com", TEMPLATE_DATA)

    async def test_rejection_is_returned(self):
        sender = self.sender(lambda request: httpx.Response(400, json={"errors": []}))

        result = await sender.send("payer@example.com", TEMPLATE_DATA)

        assert not result.success
        assert result.error == "SendGrid returned 400"


class TestGetEmailSender:
    def test_sendgrid_when_configured(self):
        sender = get_email_sender(Settings(sendgrid_api_key="SG.key"))
        assert isinstance(sender, SendGridEmailSender)

    def test_logging_otherwise(self):
        assert isinstance(get_email_sender(Settings()), LoggingEmailSender)
