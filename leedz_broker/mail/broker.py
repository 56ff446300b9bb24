"""Mail Broker — the ``gmail_send`` tool."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leedz_broker.mail.gmail_api import GmailApiError, GmailSender
from leedz_broker.mail.mime import (
    Attachment,
    InvalidEnvelope,
    MimeEnvelope,
    build_mime,
    encode_raw,
)
from leedz_broker.mail.token_store import TokenStore
from leedz_broker.rpc.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    NO_VALID_TOKEN,
    RPCError,
    ToolDescriptor,
    text_result,
)

logger = logging.getLogger(__name__)

TOOL_NAME = "gmail_send"

NO_TOKEN_MESSAGE = "No valid OAuth token; authorize from client first"


# ── Tool definition ────────────────────────────────────────────────────────────

GMAIL_SEND_TOOL = ToolDescriptor(
    name=TOOL_NAME,
    description=(
        "Send email via Gmail using the authorized account. Supports plain text "
        "and file attachments. When the user uploads files, include them in the "
        "attachments array with base64-encoded content."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "to": {"type": "string", "description": "Recipient email address"},
            "subject": {"type": "string", "description": "Email subject line"},
            "body": {"type": "string", "description": "Email body (plain text)"},
            "cc": {"type": "string", "description": "CC recipients (comma-separated)"},
            "bcc": {"type": "string", "description": "BCC recipients (comma-separated)"},
            "attachments": {
                "type": "array",
                "description": (
                    "Optional file attachments. Each attachment must have: filename "
                    "(string), content (base64 string), contentType (MIME type like "
                    '"application/pdf" or "image/png")'
                ),
                "items": {
                    "type": "object",
                    "properties": {
                        "filename": {"type": "string", "description": "Filename with extension"},
                        "content": {"type": "string", "description": "Base64 encoded file content"},
                        "contentType": {
                            "type": "string",
                            "description": "MIME type (application/pdf, image/png, image/jpeg, etc.)",
                        },
                    },
                    "required": ["filename", "content", "contentType"],
                },
            },
        },
        "required": ["to", "subject", "body"],
    },
)


# ── Argument schema ────────────────────────────────────────────────────────────


class AttachmentArgs(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    filename: str
    content: str
    content_type: str = Field(alias="contentType")


class GmailSendArgs(BaseModel):
    """``gmail_send`` arguments; unknown keys are tolerated and ignored."""

    model_config = ConfigDict(extra="allow")

    to: str
    subject: str
    body: str
    cc: str | None = None
    bcc: str | None = None
    attachments: list[AttachmentArgs] | None = None

    def to_envelope(self) -> MimeEnvelope:
        return MimeEnvelope(
            to=self.to.strip(),
            subject=self.subject,
            body=self.body,
            cc=self.cc.strip() if self.cc and self.cc.strip() else None,
            bcc=self.bcc.strip() if self.bcc and self.bcc.strip() else None,
            attachments=[
                Attachment(filename=a.filename, content=a.content, content_type=a.content_type)
                for a in self.attachments or []
            ],
        )


def _describe(exc: ValidationError) -> str:
    missing = [
        str(err["loc"][0])
        for err in exc.errors()
        if err["type"] == "missing" and len(err["loc"]) == 1
    ]
    if missing:
        return f"Missing required parameters: {', '.join(missing)}"
    first = exc.errors()[0]
    where = ".".join(str(part) for part in first["loc"])
    return f"Invalid parameter {where}: {first['msg']}"


# ── Broker ─────────────────────────────────────────────────────────────────────


class MailBroker:
    """ToolHandler for the mail process.

    Send pipeline:
      1. Read the current token (expiry re-checked now) → -32001 if none
      2. Validate arguments → -32602
      3. Assemble MIME and base64url-encode it
      4. Submit to Gmail with the token read in step 1 → -32603 on failure

    A failed send never touches the token, and nothing is queued for retry.
    """

    def __init__(self, store: TokenStore, sender: GmailSender) -> None:
        self._store = store
        self._sender = sender

    @property
    def tools(self) -> list[ToolDescriptor]:
        return [GMAIL_SEND_TOOL]

    async def call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if name is not None and name != TOOL_NAME:
            raise RPCError(INVALID_PARAMS, f"Unknown tool: {name}")

        token = self._store.current()
        if token is None:
            logger.warning("gmail_send refused — token state is %s", self._store.state.value)
            raise RPCError(NO_VALID_TOKEN, NO_TOKEN_MESSAGE)

        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise RPCError(INVALID_PARAMS, "arguments must be an object")
        try:
            envelope = GmailSendArgs.model_validate(arguments).to_envelope()
            envelope.validate()
        except ValidationError as exc:
            raise RPCError(INVALID_PARAMS, _describe(exc)) from exc
        except InvalidEnvelope as exc:
            raise RPCError(INVALID_PARAMS, str(exc)) from exc

        logger.info(
            "Sending email to %s%s",
            envelope.to,
            f" with {len(envelope.attachments)} attachment(s)" if envelope.attachments else "",
        )
        raw = encode_raw(build_mime(envelope))
        try:
            message_id = await self._sender.send(raw, token)
        except GmailApiError as exc:
            raise RPCError(INTERNAL_ERROR, f"Failed to send email: {exc}") from exc

        logger.info("Email sent successfully. Message ID: %s", message_id)
        return text_result(f"Email sent successfully to {envelope.to}. Message ID: {message_id}")
