"""MIME assembly and base64url packing for the Gmail ``messages.send`` API.

Wire format (CRLF line endings throughout)::

    To: <to>
    Subject: <subject>
    [Cc: <cc>]
    [Bcc: <bcc>]
    MIME-Version: 1.0
    Content-Type: text/plain; charset=utf-8

    <body>

With attachments the top-level type becomes ``multipart/mixed``: a
``text/plain`` part carrying the body, then one base64 part per attachment
(payload copied verbatim), closed by ``--<boundary>--``.
"""

import base64
import binascii
import secrets
import time
from dataclasses import dataclass, field
from email.header import Header

CRLF = "\r\n"


class InvalidEnvelope(ValueError):
    """Raised when an envelope can't be rendered safely."""


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str  # base64, sent as-is
    content_type: str


@dataclass(frozen=True)
class MimeEnvelope:
    """One outgoing message, as validated from the ``gmail_send`` arguments."""

    to: str
    subject: str
    body: str
    cc: str | None = None
    bcc: str | None = None
    attachments: list[Attachment] = field(default_factory=list)

    def validate(self) -> None:
        """Reject missing required fields, header injection, and bad base64.

        Raises:
            InvalidEnvelope: describing the first problem found.
        """
        missing = [name for name in ("to", "subject", "body") if not getattr(self, name)]
        if missing:
            raise InvalidEnvelope(f"Missing required parameters: {', '.join(missing)}")

        headers = {"to": self.to, "subject": self.subject, "cc": self.cc, "bcc": self.bcc}
        for index, att in enumerate(self.attachments):
            headers[f"attachments[{index}].filename"] = att.filename
            headers[f"attachments[{index}].contentType"] = att.content_type
        for name, value in headers.items():
            if value and ("\r" in value or "\n" in value):
                raise InvalidEnvelope(f"{name} must not contain line breaks")

        for index, att in enumerate(self.attachments):
            if not att.filename or not att.content_type:
                raise InvalidEnvelope(f"attachments[{index}] needs filename and contentType")
            if '"' in att.filename:
                raise InvalidEnvelope(f"attachments[{index}].filename must not contain quotes")
            try:
                base64.b64decode("".join(att.content.split()), validate=True)
            except (binascii.Error, ValueError) as exc:
                raise InvalidEnvelope(
                    f"attachments[{index}].content is not valid base64"
                ) from exc


def new_boundary() -> str:
    """Timestamp plus a random suffix; unguessable and practically unique."""
    return f"boundary_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def _encode_subject(subject: str) -> str:
    if subject.isascii():
        return subject
    return Header(subject, "utf-8").encode(linesep=CRLF)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\n", CRLF)


def build_mime(envelope: MimeEnvelope, boundary: str | None = None) -> str:
    """Render ``envelope`` as an RFC 5322 message string."""
    lines = [f"To: {envelope.to}", f"Subject: {_encode_subject(envelope.subject)}"]
    if envelope.cc:
        lines.append(f"Cc: {envelope.cc}")
    if envelope.bcc:
        lines.append(f"Bcc: {envelope.bcc}")
    lines.append("MIME-Version: 1.0")

    body = _normalize_newlines(envelope.body)

    if not envelope.attachments:
        lines.append("Content-Type: text/plain; charset=utf-8")
        lines.append("")
        lines.append(body)
        return CRLF.join(lines)

    boundary = boundary or new_boundary()
    lines.append(f'Content-Type: multipart/mixed; boundary="{boundary}"')
    lines.append("")

    lines.append(f"--{boundary}")
    lines.append("Content-Type: text/plain; charset=utf-8")
    lines.append("")
    lines.append(body)
    lines.append("")

    for att in envelope.attachments:
        lines.append(f"--{boundary}")
        lines.append(f'Content-Type: {att.content_type}; name="{att.filename}"')
        lines.append(f'Content-Disposition: attachment; filename="{att.filename}"')
        lines.append("Content-Transfer-Encoding: base64")
        lines.append("")
        lines.append(att.content)
        lines.append("")

    lines.append(f"--{boundary}--")
    return CRLF.join(lines)


def encode_raw(mime: str) -> str:
    """Base64url without padding, as Gmail expects in the ``raw`` field."""
    return base64.urlsafe_b64encode(mime.encode("utf-8")).rstrip(b"=").decode("ascii")
