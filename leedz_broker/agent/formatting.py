"""Render CRUD responses as the text of a tool result."""

import json
from typing import Any

from leedz_broker.agent.crud_client import ResponseShape, UpstreamResponse
from leedz_broker.agent.plan import CrudAction

STATS_MARKER = "📊"
LIST_MARKER = "📋"
SCALAR_MARKER = "📄"
CREATED_MARKER = "✅"
UPDATED_MARKER = "🔄"
DELETED_MARKER = "🗑️"


def _pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(", ", ": "))


def _format_stats(body: Any) -> str:
    """One ``label: value`` line per top-level stat; nested values stay JSON."""
    if not isinstance(body, dict) or not body:
        return _pretty(body)
    width = max(len(str(key)) for key in body)
    lines = []
    for key, value in body.items():
        rendered = value if isinstance(value, (int, float, str)) else _compact(value)
        lines.append(f"  {str(key) + ':':<{width + 1}} {rendered}")
    return "\n".join(lines)


def _format_get(response: UpstreamResponse, label: str) -> str:
    shape = response.shape
    if shape is ResponseShape.STATS:
        return f"{STATS_MARKER} {label}\n\n{_format_stats(response.body)}"
    if shape is ResponseShape.LIST:
        items = response.body if isinstance(response.body, list) else []
        rows = "\n".join(_compact(item) for item in items)
        return f"{LIST_MARKER} {label}\n\nFound {len(items)} items:\n{rows}".rstrip()
    return f"{SCALAR_MARKER} {label}\n\n{_pretty(response.body)}"


def format_response(response: UpstreamResponse, action: CrudAction) -> str:
    """Return the tool-result text for a successful CRUD call."""
    label = action.label
    if action.method == "GET":
        return _format_get(response, label)
    if action.method == "POST":
        return f"{CREATED_MARKER} {label}\n\nCreated successfully:\n{_pretty(response.body)}"
    if action.method == "PUT":
        return f"{UPDATED_MARKER} {label}\n\nUpdated successfully:\n{_pretty(response.body)}"
    return f"{DELETED_MARKER} {label}\n\nDeleted successfully"
