"""JSON-RPC method dispatcher — lifecycle state machine in front of a tool handler."""

import logging
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from leedz_broker.rpc.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    NOT_INITIALIZED,
    RPCError,
    RequestId,
    Session,
    ToolDescriptor,
    error_response,
    success_response,
)

logger = logging.getLogger(__name__)

# JSON value produced for one inbound frame: a response, a batch, or nothing
Reply = dict[str, Any] | list[dict[str, Any]] | None


# ── Handler interface ──────────────────────────────────────────────────────────


@runtime_checkable
class ToolHandler(Protocol):
    """Interface implemented by the Agent Broker and the Mail Broker."""

    @property
    def tools(self) -> list[ToolDescriptor]:
        """Static tool catalog advertised by ``tools/list``."""
        ...

    async def call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        """Run a ``tools/call`` and return the MCP result object.

        Raise RPCError for failures the client should see as protocol errors.
        """
        ...


class DispatcherState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"


# ── Dispatcher ─────────────────────────────────────────────────────────────────


class Dispatcher:
    """Routes decoded JSON-RPC messages to the session and the tool handler.

    States::

        Uninitialized --initialize--> Ready --begin_shutdown()--> Shutting down

    Only ``initialize``, ``ping`` and ``notifications/*`` are accepted before
    ``initialize``; everything else gets -32002.  Once shutting down, every
    new request is refused with -32600 while in-flight calls finish.
    """

    def __init__(self, session: Session, handler: ToolHandler) -> None:
        self._session = session
        self._handler = handler
        self._shutting_down = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> DispatcherState:
        if self._shutting_down:
            return DispatcherState.SHUTTING_DOWN
        if self._session.initialized:
            return DispatcherState.READY
        return DispatcherState.UNINITIALIZED

    def begin_shutdown(self) -> None:
        if not self._shutting_down:
            logger.info("Dispatcher shutting down — refusing new requests")
        self._shutting_down = True

    async def handle(self, message: Any) -> Reply:
        """Handle one decoded frame (a single message or a batch)."""
        if isinstance(message, list):
            if not message:
                return error_response(None, INVALID_REQUEST, "Invalid Request")
            replies: list[dict[str, Any]] = []
            for item in message:
                reply = await self._handle_one(item)
                if reply is not None:
                    replies.append(reply)
            return replies or None
        return await self._handle_one(message)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _handle_one(self, message: Any) -> dict[str, Any] | None:
        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        request_id = message.get("id")
        method = message.get("method")
        if method is None and ("result" in message or "error" in message):
            # A response from the host; this server never issues requests
            logger.debug("Ignoring client response frame for id=%r", request_id)
            return None

        if request_id is not None and (
            not isinstance(request_id, (str, int, float)) or isinstance(request_id, bool)
        ):
            logger.warning("Invalid JSON-RPC id: %.100r", request_id)
            return error_response(None, INVALID_REQUEST, "Invalid Request")
        is_notification = request_id is None

        params = message.get("params")
        if (
            message.get("jsonrpc") != "2.0"
            or not isinstance(method, str)
            or not isinstance(params, (dict, list, type(None)))
        ):
            logger.warning("Invalid JSON-RPC request: %.200r", message)
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        try:
            result = await self._route(method, params)
        except RPCError as exc:
            if is_notification:
                logger.debug("Dropping error for notification %s: %s", method, exc.message)
                return None
            return error_response(request_id, exc.code, exc.message, exc.data)
        except Exception as exc:  # noqa: BLE001
            logger.error("Unhandled error in %s: %s", method, exc, exc_info=True)
            if is_notification:
                return None
            return error_response(request_id, INTERNAL_ERROR, "Internal error")

        if is_notification or result is None:
            return None
        return success_response(request_id, result)

    async def _route(self, method: str, params: Any) -> dict[str, Any] | None:
        if self._shutting_down:
            raise RPCError(INVALID_REQUEST, "Server is shutting down")

        if method == "initialize":
            return self._initialize(params)
        if method == "ping":
            return {}
        if method.startswith("notifications/"):
            logger.debug("Notification received: %s", method)
            return None

        if not self._session.initialized:
            logger.warning("Rejected %s before initialize", method)
            raise RPCError(NOT_INITIALIZED, "Server not initialized")

        if method == "tools/list":
            logger.info("Handling tools/list request")
            return {"tools": [tool.to_wire() for tool in self._handler.tools]}
        if method == "tools/call":
            if not isinstance(params, dict):
                raise RPCError(INVALID_PARAMS, "tools/call params must be an object")
            return await self._handler.call_tool(params)
        if method == "prompts/list":
            return {"prompts": []}
        if method == "resources/list":
            return {"resources": []}

        logger.warning("Unknown method: %s", method)
        raise RPCError(METHOD_NOT_FOUND, "Method not found")

    def _initialize(self, params: Any) -> dict[str, Any]:
        if self._session.initialized:
            logger.info("Repeated initialize — returning the same identity")
        else:
            client_info = params.get("clientInfo") if isinstance(params, dict) else None
            if isinstance(client_info, dict):
                self._session.client_info = client_info
            logger.info(
                "Initialized session (client=%s)",
                self._session.client_info.get("name", "unknown"),
            )
            self._session.initialized = True
        return self._session.initialize_result()
