from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from sentinel.errors import ChannelConfigError
from sentinel.notifications.channels import (
    AlertMessage,
    EmailSettings,
    EmailTarget,
    SlackTarget,
    TelegramTarget,
    WhatsAppTarget,
)
from sentinel.notifications.senders import (
    SlackSender,
    SmtpEmailSender,
    TelegramSender,
    WhatsAppSender,
    split_telegram_message,
)


MESSAGE = AlertMessage(subject="🚨 Alert: api is DOWN", text="🚨 Service DOWN\n\nService: api", html="<h1>DOWN</h1>")


class _Recorder(BaseHTTPRequestHandler):
    requests: list[tuple[str, dict, dict]] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_POST(self) -> None:  # noqa: N802
        length = int(self.headers.get("Content-Length") or 0)
        body = json.loads(self.rfile.read(length) or b"{}")
        type(self).requests.append((self.path, {k.lower(): v for k, v in self.headers.items()}, body))

        if self.path.startswith("/slack/fail"):
            status, payload = 500, {"error": "nope"}
        elif self.path.startswith("/botBAD"):
            status, payload = 401, {"ok": False, "description": "Unauthorized"}
        else:
            status, payload = 200, {"ok": True}

        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)


@pytest.fixture(scope="module")
def local_server_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _Recorder)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture(autouse=True)
def _reset_requests() -> None:
    _Recorder.requests.clear()


def test_split_telegram_message_prefers_line_breaks() -> None:
    text = "\n".join(f"line {i:03d}" for i in range(100))
    parts = split_telegram_message(text, max_len=100)
    assert all(len(p) <= 100 for p in parts)
    assert "\n".join(parts) == text
    assert split_telegram_message("   ") == [""]
    assert split_telegram_message("x" * 250, max_len=100) == ["x" * 100, "x" * 100, "x" * 50]


@pytest.mark.asyncio
async def test_slack_posts_text(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        result = await SlackSender(client).send(SlackTarget(f"{local_server_base_url}/slack/hook"), MESSAGE)
        failed = await SlackSender(client).send(SlackTarget(f"{local_server_base_url}/slack/fail"), MESSAGE)

    assert result.success is True
    assert _Recorder.requests[0][2] == {"text": MESSAGE.text}
    assert failed.success is False
    assert "HTTP 500" in failed.error


@pytest.mark.asyncio
async def test_telegram_sends_each_part_and_reports_api_errors(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        sender = TelegramSender(client, api_base=local_server_base_url)
        ok = await sender.send(TelegramTarget(bot_token="GOOD", chat_id="42"), MESSAGE)
        bad = await sender.send(TelegramTarget(bot_token="BAD", chat_id="42"), MESSAGE)

    assert ok.success is True
    path, _headers, body = _Recorder.requests[0]
    assert path == "/botGOOD/sendMessage"
    assert body == {"chat_id": "42", "text": MESSAGE.text}
    assert bad.success is False
    assert bad.error == "Telegram API error: Unauthorized"


@pytest.mark.asyncio
async def test_whatsapp_uses_bearer_token(local_server_base_url: str) -> None:
    async with httpx.AsyncClient() as client:
        sender = WhatsAppSender(client, api_base=local_server_base_url)
        result = await sender.send(WhatsAppTarget(phone_number_id="123", access_token="tok", to="+15550100"), MESSAGE)

    assert result.success is True
    path, headers, body = _Recorder.requests[0]
    assert path == "/v18.0/123/messages"
    assert headers.get("authorization") == "Bearer tok"
    assert body["to"] == "+15550100"
    assert body["text"] == {"body": MESSAGE.text}


@pytest.mark.asyncio
async def test_unreachable_webhook_is_a_failed_result_without_the_secret() -> None:
    httpd = HTTPServer(("127.0.0.1", 0), _Recorder)
    host, port = httpd.server_address
    httpd.server_close()

    url = f"http://{host}:{port}/services/SECRET"
    async with httpx.AsyncClient() as client:
        result = await SlackSender(client, timeout_seconds=2.0).send(SlackTarget(url), MESSAGE)
    assert result.success is False
    assert "SECRET" not in result.error


def test_targets_validate_required_fields() -> None:
    with pytest.raises(ChannelConfigError) as exc:
        TelegramTarget(bot_token="t", chat_id=" ")
    assert exc.value.missing == ["chat_id"]

    with pytest.raises(ChannelConfigError) as exc:
        EmailTarget(recipients=("a@example.com",), settings=EmailSettings())
    assert exc.value.missing == ["user", "password"]

    with pytest.raises(ChannelConfigError):
        WhatsAppTarget(phone_number_id="1", access_token="t", to="")


def test_email_message_has_text_and_html_parts() -> None:
    target = EmailTarget(
        recipients=("a@example.com", "b@example.com"),
        settings=EmailSettings(user="monitor@example.com", password="x"),
    )
    msg = SmtpEmailSender()._build(target, MESSAGE)
    assert msg["To"] == "a@example.com, b@example.com"
    assert msg["From"] == '"Sentinel Monitor" <monitor@example.com>'
    assert msg["Subject"] == MESSAGE.subject
    assert msg.get_body(preferencelist=("html",)).get_content().strip() == "<h1>DOWN</h1>"


@pytest.mark.asyncio
async def test_sender_rejects_wrong_target_type() -> None:
    async with httpx.AsyncClient() as client:
        with pytest.raises(ChannelConfigError):
            await SlackSender(client).send(TelegramTarget(bot_token="t", chat_id="1"), MESSAGE)
