"""Async client for the Leedz CRUD HTTP service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from leedz_broker.agent.plan import CrudAction

logger = logging.getLogger(__name__)

# JSON-decoded response body
_JsonValue = dict[str, Any] | list[Any] | str | int | float | bool | None


class CrudError(Exception):
    """Base class for failed calls to the CRUD service."""


class CrudHttpError(CrudError):
    """The service answered with a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class CrudTransportError(CrudError):
    """The service could not be reached (connection refused, DNS, reset)."""


class CrudTimeoutError(CrudError):
    """The service did not answer within the configured timeout."""


class ResponseShape(str, Enum):
    """How a response body should be rendered."""

    LIST = "list"
    STATS = "stats"
    SCALAR = "scalar"


@dataclass(frozen=True)
class UpstreamResponse:
    """One CRUD response, tagged with the shape the formatter should use."""

    status: int
    body: _JsonValue
    endpoint: str

    @property
    def shape(self) -> ResponseShape:
        path = self.endpoint.split("?", 1)[0].rstrip("/")
        if path.endswith("/stats"):
            return ResponseShape.STATS
        if isinstance(self.body, list):
            return ResponseShape.LIST
        return ResponseShape.SCALAR


def _decode_body(response: httpx.Response) -> _JsonValue:
    if not response.content:
        return None
    try:
        return response.json()  # type: ignore[no-any-return]
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


def _error_message(body: _JsonValue, reason: str) -> str:
    """Render the service's ``{error, message?, errors?}`` body as one line."""
    if not isinstance(body, dict):
        return reason or "Request failed"
    parts = [str(body.get("error") or reason or "Request failed")]
    if body.get("message"):
        parts.append(str(body["message"]))
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        parts.append("; ".join(str(e) for e in errors))
    return " — ".join(parts)


class LeedzApiClient:
    """Thin async wrapper around the CRUD service's JSON endpoints.

    The ``httpx.AsyncClient`` is injected so tests can swap in a
    ``MockTransport``; the client must not have a ``base_url`` of its own.
    """

    def __init__(
        self,
        base_url: str,
        http: httpx.AsyncClient,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http
        self._timeout = timeout

    async def execute(self, action: CrudAction) -> UpstreamResponse:
        """Run one ActionPlan against the service.

        GET requests carry no body; every other method sends ``data`` as JSON.

        Raises:
            CrudHttpError: on a non-2xx status.
            CrudTimeoutError: when the call exceeds the timeout.
            CrudTransportError: on any other network failure.
        """
        url = f"{self._base_url}{action.endpoint}"
        logger.info("Executing %s %s", action.method, action.endpoint)
        kwargs: dict[str, Any] = {
            "headers": {"Content-Type": "application/json"},
            "timeout": self._timeout,
        }
        if action.method != "GET":
            kwargs["content"] = json.dumps(action.data).encode("utf-8")

        try:
            response = await self._http.request(action.method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("CRUD call timed out: %s %s", action.method, action.endpoint)
            raise CrudTimeoutError(
                f"{action.method} {action.endpoint} timed out after {self._timeout:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("CRUD call failed: %s %s — %s", action.method, action.endpoint, exc)
            raise CrudTransportError(str(exc)) from exc

        body = _decode_body(response)
        if not response.is_success:
            error = CrudHttpError(response.status_code, _error_message(body, response.reason_phrase))
            logger.error("HTTP request failed: %s", error)
            raise error

        logger.info("HTTP request successful: %d", response.status_code)
        return UpstreamResponse(status=response.status_code, body=body, endpoint=action.endpoint)

    async def fetch_llm_api_key(self) -> str | None:
        """Return ``llmApiKey`` from ``GET /config``, or None if unavailable.

        Never raises; the caller falls back to the key in its config file.
        """
        try:
            response = await self._http.get(f"{self._base_url}/config", timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            logger.warning("Could not fetch API key from database, using config file: %s", exc)
            return None

        if isinstance(data, list):
            data = data[0] if data else {}
        key = data.get("llmApiKey") if isinstance(data, dict) else None
        if not key:
            logger.info("Database config has no llmApiKey; using config file")
            return None
        logger.info("Using API key from database Config")
        return str(key)
