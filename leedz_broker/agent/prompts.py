"""Tool definition, canned replies, and message builders for the Agent Broker."""

from typing import Any

from leedz_broker.rpc.types import ToolDescriptor

TOOL_NAME = "the_leedz"

# Longest slice of a user message or model reply written to the log
LOG_PREVIEW_CHARS = 100


# ── Canned replies ─────────────────────────────────────────────────────────────

#: Returned when the model replied but no usable ActionPlan could be read from it.
NOT_UNDERSTOOD_REPLY = (
    "I couldn't understand your request. Please try being more specific "
    "about what you want to do with the Leedz."
)

#: Returned when the model could not be reached (timeout, auth, outage).
UPSTREAM_APOLOGY_REPLY = (
    "Sorry, I can't reach the language model right now. "
    "Please try your request again in a moment."
)

NETWORK_ERROR_REPLY = "Network error: could not reach the Leedz server"


# ── Tool definition ────────────────────────────────────────────────────────────

LEEDZ_TOOL = ToolDescriptor(
    name=TOOL_NAME,
    description=(
        "Interact with the Leedz CRM: create clients, manage bookings, "
        "get statistics"
    ),
    input_schema={
        "type": "object",
        "properties": {
            "message": {
                "type": "string",
                "description": "Natural language request to the Leedz CRM",
            },
        },
        "required": ["message"],
    },
)


# ── Message extraction ─────────────────────────────────────────────────────────


def _content_text(content: Any) -> str | None:
    """Flatten a chat message ``content`` (string or list of text blocks)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(block.get("text", ""))
            for block in content
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ]
        joined = "".join(parts)
        return joined or None
    return None


def extract_user_message(params: dict[str, Any]) -> str | None:
    """Find the user's natural-language request in ``tools/call`` params.

    Checked in order: ``arguments.request``, ``arguments.message``, then the
    content of the last entry in ``params.messages``.  Blank strings count as
    missing.
    """
    arguments = params.get("arguments")
    if isinstance(arguments, dict):
        for key in ("request", "message"):
            value = arguments.get(key)
            if isinstance(value, str) and value.strip():
                return value

    messages = params.get("messages")
    if isinstance(messages, list) and messages:
        last = messages[-1]
        if isinstance(last, dict):
            text = _content_text(last.get("content"))
            if text and text.strip():
                return text
    return None


def build_messages(user_message: str) -> list[dict[str, str]]:
    """Build the Anthropic messages list for translating one request."""
    return [{"role": "user", "content": user_message}]
