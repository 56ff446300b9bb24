"""Agent Broker — the ``the_leedz`` tool: translate, validate, execute, format."""

from __future__ import annotations

import logging
from typing import Any

from leedz_broker.agent.crud_client import (
    CrudHttpError,
    CrudTimeoutError,
    CrudTransportError,
    LeedzApiClient,
)
from leedz_broker.agent.extract import NoJSONFound, extract_json
from leedz_broker.agent.formatting import format_response
from leedz_broker.agent.plan import ConversationalReply, InvalidPlan, parse_plan
from leedz_broker.agent.prompts import (
    LEEDZ_TOOL,
    LOG_PREVIEW_CHARS,
    NETWORK_ERROR_REPLY,
    NOT_UNDERSTOOD_REPLY,
    UPSTREAM_APOLOGY_REPLY,
    extract_user_message,
)
from leedz_broker.agent.translator import RequestTranslator, TranslationError
from leedz_broker.rpc.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    RPCError,
    ToolDescriptor,
    text_result,
)

logger = logging.getLogger(__name__)


class AgentBroker:
    """ToolHandler for the conversational process.

    Pipeline per ``tools/call``:
      1. Extract the user message from the params
      2. Translate it with the model → reply text
      3. Decode one JSON value from the reply
      4. Validate it as an ActionPlan
      5. Execute CRUD actions against the service
      6. Format the result as tool-result text

    Model problems (unreachable, no JSON, bad plan) always come back as a
    polite conversational reply, never as a protocol error.  CRUD status
    errors come back as ``HTTP <status>: <message>`` text; only a CRUD
    timeout surfaces as -32603.
    """

    def __init__(self, translator: RequestTranslator, api: LeedzApiClient) -> None:
        self._translator = translator
        self._api = api

    @property
    def tools(self) -> list[ToolDescriptor]:
        return [LEEDZ_TOOL]

    async def call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if name is not None and name != LEEDZ_TOOL.name:
            raise RPCError(INVALID_PARAMS, f"Unknown tool: {name}")

        user_message = extract_user_message(params)
        if user_message is None:
            logger.warning("No user message found in tool call")
            raise RPCError(INVALID_PARAMS, "No user message found in request")

        logger.info("Processing tool call: %.*s", LOG_PREVIEW_CHARS, user_message)
        return text_result(await self.respond(user_message))

    async def respond(self, user_message: str) -> str:
        """Run steps 2-6 for one message and return the tool-result text."""
        try:
            reply = await self._translator.translate(user_message)
        except TranslationError as exc:
            logger.error("Translation failed: %s", exc)
            return UPSTREAM_APOLOGY_REPLY

        try:
            plan = parse_plan(extract_json(reply))
        except NoJSONFound as exc:
            logger.warning("No JSON found in model reply: %s", exc)
            return NOT_UNDERSTOOD_REPLY
        except InvalidPlan as exc:
            logger.warning("Rejected ActionPlan: %s", exc)
            return NOT_UNDERSTOOD_REPLY

        if isinstance(plan, ConversationalReply):
            logger.info("Returning conversational response")
            return plan.response

        logger.info("Executing database operation: %s %s", plan.method, plan.endpoint)
        try:
            response = await self._api.execute(plan)
        except CrudHttpError as exc:
            return str(exc)
        except CrudTimeoutError as exc:
            raise RPCError(INTERNAL_ERROR, f"Leedz server timed out: {exc}") from exc
        except CrudTransportError:
            return NETWORK_ERROR_REPLY

        return format_response(response, plan)
