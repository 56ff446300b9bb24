"""Data types shared by the JSON-RPC frame loop, dispatcher, and brokers."""

from dataclasses import dataclass, field
from typing import Any

from mcp import types
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "NOT_INITIALIZED",
    "NO_VALID_TOKEN",
    "PARSE_ERROR",
    "RPCError",
    "RequestId",
    "Session",
    "ToolDescriptor",
    "error_response",
    "success_response",
    "text_result",
]

# Application-defined codes (the -32000..-32099 server range)
NO_VALID_TOKEN = -32001
NOT_INITIALIZED = -32002

DEFAULT_PROTOCOL_VERSION = "2025-06-18"

RequestId = str | int | float | None


class RPCError(Exception):
    """A failure that should reach the client as a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool advertised by ``tools/list``.

    ``input_schema`` is the JSON Schema object sent to the host agent; the
    brokers validate the same shape with pydantic at call time.
    """

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        tool = types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )
        return tool.model_dump(by_alias=True, exclude_none=True)


@dataclass
class Session:
    """Per-process protocol session, owned by the dispatcher."""

    server_name: str
    server_version: str
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    initialized: bool = False
    client_info: dict[str, Any] = field(default_factory=dict)

    def initialize_result(self) -> dict[str, Any]:
        result = types.InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability()),
            serverInfo=types.Implementation(
                name=self.server_name, version=self.server_version
            ),
        )
        return result.model_dump(by_alias=True, exclude_none=True)


# ── Response builders ──────────────────────────────────────────────────────────


def success_response(request_id: RequestId, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(
    request_id: RequestId, code: int, message: str, data: Any = None
) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": RPCError(code, message, data).to_dict(),
    }


def text_result(text: str) -> dict[str, Any]:
    """Wrap plain text as an MCP ``tools/call`` result."""
    result = types.CallToolResult(content=[types.TextContent(type="text", text=text)])
    return result.model_dump(by_alias=True, exclude_none=True)
