"""ActionPlan — the structured output of the translation step.

A plan is exactly one of:

- ``ConversationalReply``: ``{"actionable": false, "response": "..."}``
- ``CrudAction``: ``{"actionable": true, "method", "endpoint", "data", "description"}``

Unknown fields are kept on the model (``extra="allow"``) so newer prompts can
add hints, but only ``method``, ``endpoint`` and ``data`` ever reach the CRUD
service.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

PLAN_SCHEMA_VERSION = 1

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


class InvalidPlan(ValueError):
    """Raised when a decoded model reply is not a well-formed ActionPlan."""


class ConversationalReply(BaseModel):
    """A non-actionable plan: the model answered in words."""

    model_config = ConfigDict(extra="allow", frozen=True)

    actionable: Literal[False] = False
    response: str = Field(min_length=1)


class CrudAction(BaseModel):
    """An actionable plan: one HTTP call against the CRUD service."""

    model_config = ConfigDict(extra="allow", frozen=True)

    actionable: Literal[True] = True
    method: HttpMethod
    endpoint: str
    data: Any = None
    description: str = ""

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("endpoint")
    @classmethod
    def _relative_endpoint(cls, value: str) -> str:
        value = value.strip()
        # Must stay on the configured base URL: no scheme, no host, no "//"
        if not value.startswith("/") or value.startswith("//") or "://" in value:
            raise ValueError("endpoint must be a path starting with '/'")
        return value

    @property
    def label(self) -> str:
        """Human description, falling back to ``METHOD /endpoint``."""
        return self.description.strip() or f"{self.method} {self.endpoint}"


ActionPlan = ConversationalReply | CrudAction


def parse_plan(value: Any) -> ActionPlan:
    """Validate a decoded model reply against the ActionPlan schema.

    ``actionable`` must be a real JSON boolean; anything else (missing,
    ``"true"``, ``1``) is rejected rather than coerced.

    Raises:
        InvalidPlan: if the value matches neither plan shape.
    """
    if not isinstance(value, dict):
        raise InvalidPlan(f"plan must be a JSON object, got {type(value).__name__}")

    actionable = value.get("actionable")
    model: type[BaseModel]
    if actionable is True:
        model = CrudAction
    elif actionable is False:
        model = ConversationalReply
    else:
        raise InvalidPlan(f"'actionable' must be true or false, got {actionable!r}")

    try:
        plan = model.model_validate(value)
    except ValidationError as exc:
        raise InvalidPlan(
            f"ill-formed {model.__name__}: {exc.error_count()} error(s) — "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
        ) from exc

    extra = sorted((plan.model_extra or {}).keys())
    if extra:
        logger.debug("ActionPlan carries extra fields (ignored): %s", extra)
    logger.debug("Parsed ActionPlan v%d: %s", PLAN_SCHEMA_VERSION, type(plan).__name__)
    return plan  # type: ignore[return-value]
