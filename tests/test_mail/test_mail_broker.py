"""Tests for MailBroker — the Gmail sender is mocked."""

import base64
import email
from email.message import Message
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from leedz_broker.mail.broker import NO_TOKEN_MESSAGE, MailBroker
from leedz_broker.mail.gmail_api import GmailApiError
from leedz_broker.mail.token_store import TokenStore
from leedz_broker.rpc.types import INTERNAL_ERROR, INVALID_PARAMS, NO_VALID_TOKEN, RPCError

PDF_B64 = base64.b64encode(b"%PDF-1.4 fake").decode("ascii")


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_broker(
    clock: Any, token: str | None = "ya29.tok", send_error: Exception | None = None
) -> tuple[MailBroker, TokenStore, MagicMock]:
    store = TokenStore(clock=clock)
    if token is not None:
        store.authorize(token)
    sender = MagicMock()
    sender.send = AsyncMock(return_value="18c2f", side_effect=send_error)
    return MailBroker(store, sender), store, sender


def send_call(**arguments: Any) -> dict[str, Any]:
    defaults: dict[str, Any] = {"to": "a@b.com", "subject": "Hi", "body": "Hello"}
    return {"name": "gmail_send", "arguments": {**defaults, **arguments}}


def decode_raw(raw: str) -> Message:
    padded = raw + "=" * (-len(raw) % 4)
    return email.message_from_bytes(base64.urlsafe_b64decode(padded))


# ── Happy path ─────────────────────────────────────────────────────────────────


class TestSend:
    def test_advertises_single_tool(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock)
        (tool,) = broker.tools
        assert tool.name == "gmail_send"
        assert tool.input_schema["required"] == ["to", "subject", "body"]

    async def test_plain_send(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        result = await broker.call_tool(send_call())
        assert result["content"][0]["text"] == "Email sent successfully to a@b.com. Message ID: 18c2f"

        raw, token = sender.send.await_args.args
        assert token == "ya29.tok"
        msg = decode_raw(raw)
        assert msg["To"] == "a@b.com"
        assert msg["Subject"] == "Hi"
        assert msg.get_content_type() == "text/plain"

    async def test_send_with_attachment(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        attachments = [{"filename": "x.pdf", "content": PDF_B64, "contentType": "application/pdf"}]
        await broker.call_tool(send_call(attachments=attachments, cc="c@d.com"))

        msg = decode_raw(sender.send.await_args.args[0])
        assert msg.get_content_type() == "multipart/mixed"
        assert msg["Cc"] == "c@d.com"
        parts = msg.get_payload()
        assert parts[1].get_filename() == "x.pdf"
        assert parts[1].get_payload(decode=True) == b"%PDF-1.4 fake"

    async def test_unknown_arguments_ignored(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        await broker.call_tool(send_call(priority="high"))
        sender.send.assert_awaited_once()


# ── Token checks ───────────────────────────────────────────────────────────────


class TestToken:
    async def test_no_token(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock, token=None)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call())
        assert exc_info.value.code == NO_VALID_TOKEN
        assert exc_info.value.message == NO_TOKEN_MESSAGE
        sender.send.assert_not_called()

    async def test_expired_token(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        clock.advance(minutes=61)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call())
        assert exc_info.value.code == NO_VALID_TOKEN
        sender.send.assert_not_called()

    async def test_token_checked_before_arguments(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock, token=None)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool({"name": "gmail_send", "arguments": {}})
        assert exc_info.value.code == NO_VALID_TOKEN


# ── Argument validation ────────────────────────────────────────────────────────


class TestArguments:
    async def test_missing_required(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool({"name": "gmail_send", "arguments": {"to": "a@b.com"}})
        assert exc_info.value.code == INVALID_PARAMS
        assert exc_info.value.message == "Missing required parameters: subject, body"
        sender.send.assert_not_called()

    async def test_empty_required(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call(subject=""))
        assert exc_info.value.code == INVALID_PARAMS

    async def test_header_injection_rejected(self, clock: Any) -> None:
        broker, _, sender = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call(subject="Hi\r\nBcc: everyone@example.com"))
        assert exc_info.value.code == INVALID_PARAMS
        sender.send.assert_not_called()

    async def test_attachment_missing_content_type(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call(attachments=[{"filename": "x.pdf", "content": PDF_B64}]))
        assert exc_info.value.code == INVALID_PARAMS
        assert "contentType" in exc_info.value.message

    async def test_arguments_must_be_object(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool({"name": "gmail_send", "arguments": ["a@b.com"]})
        assert exc_info.value.code == INVALID_PARAMS

    async def test_unknown_tool(self, clock: Any) -> None:
        broker, _, _ = make_broker(clock)
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool({"name": "gmail_read", "arguments": {}})
        assert exc_info.value.code == INVALID_PARAMS


# ── Upstream failures ──────────────────────────────────────────────────────────


class TestUpstream:
    async def test_gmail_rejection_is_internal_error(self, clock: Any) -> None:
        broker, store, _ = make_broker(
            clock, send_error=GmailApiError("HTTP 401: Invalid Credentials", status=401)
        )
        with pytest.raises(RPCError) as exc_info:
            await broker.call_tool(send_call())
        assert exc_info.value.code == INTERNAL_ERROR
        assert exc_info.value.message == "Failed to send email: HTTP 401: Invalid Credentials"
        # The token survives a failed send
        assert store.current() == "ya29.tok"
