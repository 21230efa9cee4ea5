"""Reference channel transports: Slack webhook, Telegram Bot API, WhatsApp Cloud API, SMTP."""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.message import EmailMessage

import httpx
import structlog

from ..errors import ChannelConfigError
from .channels import (
    AlertMessage,
    ChannelTarget,
    EmailTarget,
    SendResult,
    SlackTarget,
    TelegramTarget,
    WhatsAppTarget,
)


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900
WHATSAPP_API_VERSION = "v18.0"


def _expect(target: ChannelTarget, kind: type, channel: str):
    if not isinstance(target, kind):
        raise ChannelConfigError(channel, [kind.__name__])
    return target


def _redact(text: str, *secrets: str) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "<redacted>")
    return text


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    """Split on line breaks where possible so every part fits one Telegram message."""
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        parts.append(s[:cut].rstrip())
        s = s[cut:].lstrip()
    return parts


class SlackSender:
    def __init__(self, client: httpx.AsyncClient, timeout_seconds: float = 10.0):
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def send(self, target: ChannelTarget, message: AlertMessage) -> SendResult:
        target = _expect(target, SlackTarget, "slack")
        try:
            resp = await self.client.post(target.webhook_url, json={"text": message.text}, timeout=self.timeout_seconds)
        except httpx.HTTPError as e:
            return SendResult.failed(_redact(f"{type(e).__name__}: {e}", target.webhook_url))
        if resp.status_code >= 400:
            return SendResult.failed(f"Slack webhook returned HTTP {resp.status_code}")
        return SendResult.ok()


class TelegramSender:
    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 15.0,
        api_base: str = "https://api.telegram.org",
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.api_base = api_base.rstrip("/")

    async def _send_part(self, target: TelegramTarget, text: str) -> SendResult:
        url = f"{self.api_base}/bot{target.bot_token}/sendMessage"
        try:
            resp = await self.client.post(
                url, json={"chat_id": target.chat_id, "text": text}, timeout=self.timeout_seconds
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            return SendResult.failed(_redact(f"{type(e).__name__}: {e}", target.bot_token))
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            return SendResult.failed(f"Telegram API error: {description or resp.status_code}")
        return SendResult.ok()

    async def send(self, target: ChannelTarget, message: AlertMessage) -> SendResult:
        target = _expect(target, TelegramTarget, "telegram")
        first_error = None
        for part in split_telegram_message(message.text):
            result = await self._send_part(target, part)
            if not result.success and first_error is None:
                first_error = result.error
        if first_error is not None:
            return SendResult.failed(first_error)
        return SendResult.ok()


class WhatsAppSender:
    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout_seconds: float = 15.0,
        api_base: str = "https://graph.facebook.com",
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.api_base = api_base.rstrip("/")

    async def send(self, target: ChannelTarget, message: AlertMessage) -> SendResult:
        target = _expect(target, WhatsAppTarget, "whatsapp")
        url = f"{self.api_base}/{WHATSAPP_API_VERSION}/{target.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": target.to,
            "type": "text",
            "text": {"body": message.text},
        }
        headers = {"Authorization": f"Bearer {target.access_token}"}
        try:
            resp = await self.client.post(url, json=payload, headers=headers, timeout=self.timeout_seconds)
        except httpx.HTTPError as e:
            return SendResult.failed(_redact(f"{type(e).__name__}: {e}", target.access_token))
        if resp.status_code >= 400:
            return SendResult.failed(f"WhatsApp API returned HTTP {resp.status_code}")
        return SendResult.ok()


class SmtpEmailSender:
    """Sends the text and HTML alternatives over SMTP on a worker thread."""

    def __init__(self, timeout_seconds: float = 20.0):
        self.timeout_seconds = timeout_seconds

    def _build(self, target: EmailTarget, message: AlertMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = target.settings.from_address()
        msg["To"] = ", ".join(target.recipients)
        msg["Subject"] = message.subject
        msg.set_content(message.text)
        if message.html:
            msg.add_alternative(message.html, subtype="html")
        return msg

    def _deliver(self, target: EmailTarget, msg: EmailMessage) -> None:
        settings = target.settings
        if settings.secure:
            with smtplib.SMTP_SSL(
                settings.host, settings.port, timeout=self.timeout_seconds, context=ssl.create_default_context()
            ) as smtp:
                smtp.login(settings.user, settings.password)
                smtp.send_message(msg)
            return
        with smtplib.SMTP(settings.host, settings.port, timeout=self.timeout_seconds) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls(context=ssl.create_default_context())
                smtp.ehlo()
            smtp.login(settings.user, settings.password)
            smtp.send_message(msg)

    async def send(self, target: ChannelTarget, message: AlertMessage) -> SendResult:
        target = _expect(target, EmailTarget, "email")
        msg = self._build(target, message)
        try:
            await asyncio.to_thread(self._deliver, target, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email delivery failed", host=target.settings.host, error=str(e))
            return SendResult.failed(f"{type(e).__name__}: {e}")
        return SendResult.ok()
