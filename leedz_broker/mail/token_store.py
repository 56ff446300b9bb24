"""In-memory OAuth token held by the Mail Broker."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(hours=1)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(instant: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    utc = instant.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class TokenState(str, Enum):
    EMPTY = "empty"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"


@dataclass(frozen=True)
class OAuthToken:
    """An opaque bearer token and the instant it stops being usable."""

    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class TokenStore:
    """Holds at most one bearer token; never writes it anywhere.

    Written only by the loopback HTTP side (``authorize``) and read only by
    the send path (``current``).  Both run on one event loop and neither
    method awaits, so no lock is needed.  Every read compares the expiry
    against the clock again — a token is never assumed valid for longer than
    the instant it was checked.
    """

    def __init__(self, clock: Clock = utc_now, lifetime: timedelta = TOKEN_LIFETIME) -> None:
        self._clock = clock
        self._lifetime = lifetime
        self._token: OAuthToken | None = None

    def authorize(self, value: str) -> OAuthToken:
        """Store ``value`` with expiry now + lifetime, replacing any old token."""
        token = OAuthToken(value=value, expires_at=self._clock() + self._lifetime)
        replaced = self._token is not None
        self._token = token
        logger.info(
            "OAuth token %s, expires at %s",
            "replaced" if replaced else "received",
            isoformat_z(token.expires_at),
        )
        return token

    def current(self) -> str | None:
        """Return the bearer string if a token is held and not yet expired."""
        token = self._token
        if token is None or not token.is_valid(self._clock()):
            return None
        return token.value

    @property
    def state(self) -> TokenState:
        if self._token is None:
            return TokenState.EMPTY
        if self._token.is_valid(self._clock()):
            return TokenState.AUTHORIZED
        return TokenState.EXPIRED

    @property
    def expires_at(self) -> datetime | None:
        return self._token.expires_at if self._token is not None else None

    def clear(self) -> None:
        self._token = None
