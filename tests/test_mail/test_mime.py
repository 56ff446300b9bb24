"""Tests for MIME assembly and validation."""

import base64
import email
from email.header import decode_header, make_header

import pytest

from leedz_broker.mail.mime import (
    Attachment,
    InvalidEnvelope,
    MimeEnvelope,
    build_mime,
    encode_raw,
    new_boundary,
)

PDF_B64 = base64.b64encode(b"%PDF-1.4 fake").decode("ascii")


# ── Helpers ────────────────────────────────────────────────────────────────────


def envelope(**kwargs: object) -> MimeEnvelope:
    defaults: dict[str, object] = dict(to="a@b.com", subject="Hi", body="Hello there")
    return MimeEnvelope(**{**defaults, **kwargs})  # type: ignore[arg-type]


def attachment(**kwargs: str) -> Attachment:
    defaults = dict(filename="doc.pdf", content=PDF_B64, content_type="application/pdf")
    return Attachment(**{**defaults, **kwargs})


# ── build_mime ─────────────────────────────────────────────────────────────────


class TestPlainMessage:
    def test_exact_layout(self) -> None:
        mime = build_mime(envelope())
        assert mime == (
            "To: a@b.com\r\n"
            "Subject: Hi\r\n"
            "MIME-Version: 1.0\r\n"
            "Content-Type: text/plain; charset=utf-8\r\n"
            "\r\n"
            "Hello there"
        )

    def test_cc_and_bcc_follow_subject(self) -> None:
        mime = build_mime(envelope(cc="c@d.com", bcc="e@f.com"))
        lines = mime.split("\r\n")
        assert lines[:4] == ["To: a@b.com", "Subject: Hi", "Cc: c@d.com", "Bcc: e@f.com"]

    def test_body_newlines_normalized(self) -> None:
        mime = build_mime(envelope(body="one\ntwo\r\nthree\rfour"))
        assert mime.endswith("one\r\ntwo\r\nthree\r\nfour")

    def test_non_ascii_subject_is_encoded_word(self) -> None:
        mime = build_mime(envelope(subject="Grüße aus Köln"))
        msg = email.message_from_string(mime)
        assert msg["Subject"].startswith("=?utf-8?")
        assert str(make_header(decode_header(msg["Subject"]))) == "Grüße aus Köln"

    def test_long_non_ascii_subject_folds_with_crlf(self) -> None:
        subject = "Rechnung für Ihre Buchung " * 4
        mime = build_mime(envelope(subject=subject))
        headers = mime.split("\r\n\r\n", 1)[0]
        assert "\r\n " in headers  # folded
        assert "\n" not in headers.replace("\r\n", "")
        assert "\r" not in headers.replace("\r\n", "")

        msg = email.message_from_string(mime)
        assert str(make_header(decode_header(msg["Subject"]))).rstrip() == subject.rstrip()
        assert msg["MIME-Version"] == "1.0"


class TestMultipart:
    def test_attachment_parts(self) -> None:
        mime = build_mime(
            envelope(attachments=[attachment(), attachment(filename="b.png", content_type="image/png")]),
            boundary="boundary_1_x",
        )
        assert 'Content-Type: multipart/mixed; boundary="boundary_1_x"' in mime
        assert mime.endswith("--boundary_1_x--")
        assert mime.count("--boundary_1_x\r\n") == 3

        msg = email.message_from_string(mime)
        parts = msg.get_payload()
        assert [p.get_content_type() for p in parts] == ["text/plain", "application/pdf", "image/png"]
        assert parts[1].get_filename() == "doc.pdf"
        assert parts[1].get_payload(decode=True) == b"%PDF-1.4 fake"

    def test_generated_boundary(self) -> None:
        mime = build_mime(envelope(attachments=[attachment()]))
        msg = email.message_from_string(mime)
        assert msg.get_boundary().startswith("boundary_")

    def test_boundaries_differ(self) -> None:
        assert new_boundary() != new_boundary()


# ── encode_raw ─────────────────────────────────────────────────────────────────


class TestEncodeRaw:
    def test_urlsafe_without_padding(self) -> None:
        raw = encode_raw("Subject: ??>>\r\n\r\nÿ")
        assert "=" not in raw
        assert "+" not in raw and "/" not in raw
        padded = raw + "=" * (-len(raw) % 4)
        assert base64.urlsafe_b64decode(padded).decode("utf-8") == "Subject: ??>>\r\n\r\nÿ"


# ── validate ───────────────────────────────────────────────────────────────────


class TestValidate:
    def test_valid(self) -> None:
        envelope(cc="c@d.com", attachments=[attachment()]).validate()

    def test_missing_fields_listed(self) -> None:
        with pytest.raises(InvalidEnvelope, match="Missing required parameters: to, body"):
            envelope(to="", body="").validate()

    @pytest.mark.parametrize("field", ["to", "subject", "cc", "bcc"])
    def test_header_injection(self, field: str) -> None:
        with pytest.raises(InvalidEnvelope, match="line breaks"):
            envelope(**{field: "x@y.com\r\nBcc: victim@z.com"}).validate()

    def test_filename_injection(self) -> None:
        with pytest.raises(InvalidEnvelope):
            envelope(attachments=[attachment(filename="a.pdf\nX-Evil: 1")]).validate()

    def test_filename_quote(self) -> None:
        with pytest.raises(InvalidEnvelope, match="quotes"):
            envelope(attachments=[attachment(filename='a".pdf')]).validate()

    def test_bad_base64(self) -> None:
        with pytest.raises(InvalidEnvelope, match="base64"):
            envelope(attachments=[attachment(content="not base64!!")]).validate()

    def test_wrapped_base64_accepted(self) -> None:
        wrapped = "\r\n".join([PDF_B64[:8], PDF_B64[8:]])
        envelope(attachments=[attachment(content=wrapped)]).validate()

    def test_attachment_needs_content_type(self) -> None:
        with pytest.raises(InvalidEnvelope, match="contentType"):
            envelope(attachments=[attachment(content_type="")]).validate()
