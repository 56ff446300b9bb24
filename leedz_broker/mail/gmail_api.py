"""Gmail REST client — submits pre-built MIME messages with a bearer token."""

import json
import logging
from typing import Any

import httpx

from leedz_broker.config import GMAIL_SEND_URL

logger = logging.getLogger(__name__)


class GmailApiError(Exception):
    """Raised when ``messages.send`` fails or cannot be reached.

    ``status`` is None for transport failures (DNS, refused, reset).
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _provider_message(response: httpx.Response) -> str:
    """Pull ``error.message`` out of a Google API error body if there is one."""
    try:
        data: Any = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text.strip()[:200] or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase


class GmailSender:
    """Thin async wrapper around ``users.messages.send``.

    No client-side timeout is applied; the provider enforces its own.  No
    retries either — a failed send leaves the token untouched and the host
    agent decides whether to try again.
    """

    def __init__(self, http: httpx.AsyncClient, send_url: str = GMAIL_SEND_URL) -> None:
        self._http = http
        self._send_url = send_url

    async def send(self, raw: str, token: str) -> str:
        """Submit a base64url-encoded message and return Gmail's message id.

        Raises:
            GmailApiError: on a non-2xx status or a transport failure.
        """
        try:
            response = await self._http.post(
                self._send_url,
                json={"raw": raw},
                headers={"Authorization": f"Bearer {token}"},
                timeout=None,
            )
        except httpx.HTTPError as exc:
            logger.error("Gmail API unreachable: %s", exc)
            raise GmailApiError(f"Gmail API unreachable: {exc}") from exc

        if not response.is_success:
            message = _provider_message(response)
            logger.error("Gmail API returned %d: %s", response.status_code, message)
            raise GmailApiError(
                f"HTTP {response.status_code}: {message}", status=response.status_code
            )

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise GmailApiError("Gmail API returned a non-JSON success body") from exc
        message_id = data.get("id") if isinstance(data, dict) else None
        if not message_id:
            raise GmailApiError("Gmail API response did not include a message id")
        return str(message_id)
