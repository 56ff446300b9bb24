"""Natural-language → ActionPlan translation via the Anthropic Messages API."""

from __future__ import annotations

import asyncio
import logging

import anthropic
from anthropic import AsyncAnthropic

from leedz_broker.agent.prompts import LOG_PREVIEW_CHARS, build_messages
from leedz_broker.config import LLMConfig

logger = logging.getLogger(__name__)


class TranslationError(Exception):
    """Raised when the model could not be reached or returned no text."""


class RequestTranslator:
    """Sends one user request plus the configured system prompt to the model.

    Stateless across calls: every request is translated on its own, with no
    conversation history.  The system prompt (from ``llm.systemPrompt``)
    constrains the model to answer with a single ActionPlan JSON object; this
    class only returns the raw reply text — decoding and validation happen in
    the broker.

    Usage::

        translator = RequestTranslator(config.llm, api_key)
        text = await translator.translate("show me all clients")
    """

    def __init__(
        self,
        config: LLMConfig,
        api_key: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._config = config
        self._client = client or AsyncAnthropic(
            api_key=api_key or config.api_key,
            base_url=config.sdk_base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
            default_headers={"anthropic-version": config.anthropic_version},
        )

    async def translate(self, user_message: str) -> str:
        """Return the model's reply text for ``user_message``.

        The whole call is capped at ``llm.timeoutSeconds`` (30 s by default).

        Raises:
            TranslationError: on timeout, any API error, or an empty reply.
        """
        logger.debug("Sending request to model: %.*s", LOG_PREVIEW_CHARS, user_message)
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=self._config.max_tokens,
                    system=self._config.system_prompt,
                    messages=build_messages(user_message),  # type: ignore[arg-type]
                ),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise TranslationError(
                f"model did not answer within {self._config.timeout_seconds:g}s"
            ) from exc
        except anthropic.APIError as exc:
            raise TranslationError(f"model API error: {exc}") from exc

        for block in response.content:
            if getattr(block, "type", None) == "text":
                text = str(getattr(block, "text", ""))
                logger.debug("Model reply: %.200s", text)
                return text

        raise TranslationError(
            f"model returned no text block (stop_reason={response.stop_reason!r})"
        )
