"""Pull a single JSON value out of a language-model reply.

Models asked for "only JSON" still wrap it in prose or markdown fences.  The
reply is first normalized (a fenced code block, if any, replaces the whole
text), then decoded with three ordered strategies:

1. the whole text is one JSON value;
2. the fenced block body is one JSON value;
3. a JSON value starts at the first ``{`` or ``[``.

Strategy 3 uses ``json.JSONDecoder.raw_decode``, which understands strings
and escapes, so brackets inside string values never confuse it.  Each
strategy either yields exactly one decoded value or fails; nothing is
guessed.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```json[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)

_decoder = json.JSONDecoder()


class NoJSONFound(ValueError):
    """Raised when no JSON value can be decoded from the text."""


def strip_fence(text: str) -> str | None:
    """Return the body of the first fenced code block, preferring ```json fences."""
    match = _JSON_FENCE_RE.search(text) or _FENCE_RE.search(text)
    if match is None:
        return None
    return match.group(1).strip()


def _decode_whole(text: str) -> Any:
    """Decode ``text`` as exactly one JSON value (surrounding whitespace allowed)."""
    return json.loads(text)


def _decode_first_value(text: str) -> Any:
    """Decode the JSON value that begins at the first ``{`` or ``[``."""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        raise NoJSONFound("no '{' or '[' in text")
    value, _end = _decoder.raw_decode(text, min(starts))
    return value


def extract_json(text: str) -> Any:
    """Return the JSON value contained in ``text``.

    Raises:
        NoJSONFound: if none of the strategies decodes a value.
    """
    if not text or not text.strip():
        raise NoJSONFound("empty text")
    stripped = text.strip()

    try:
        return _decode_whole(stripped)
    except json.JSONDecodeError:
        pass

    fenced = strip_fence(stripped)
    if fenced:
        try:
            return _decode_whole(fenced)
        except json.JSONDecodeError:
            logger.debug("Fenced block is not pure JSON; scanning it for a value")
            stripped = fenced

    try:
        return _decode_first_value(stripped)
    except json.JSONDecodeError as exc:
        raise NoJSONFound(f"invalid JSON at position {exc.pos}: {exc.msg}") from exc
