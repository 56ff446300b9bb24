"""Broker configuration — one JSON file per broker, loaded once at startup."""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from leedz_broker.rpc.types import DEFAULT_PROTOCOL_VERSION

logger = logging.getLogger(__name__)

AGENT_CONFIG_FILENAME = "mcp_server_config.json"
MAIL_CONFIG_FILENAME = "gmail_mcp_config.json"

# The Anthropic SDK always appends this path to its base URL
_MESSAGES_PATH = "/v1/messages"

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class ConfigError(Exception):
    """Raised when a config file is missing, unreadable, or incomplete."""


def default_config_path(filename: str) -> Path:
    """Return ``filename`` beside the running executable."""
    return Path(sys.argv[0]).resolve().parent / filename


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to load config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a JSON object")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config section {name!r} must be an object")
    return value


def _require(section: dict[str, Any], key: str, dotted: str) -> Any:
    value = section.get(key)
    if value in (None, ""):
        raise ConfigError(f"Missing required config key {dotted!r}")
    return value


def _log_path(data: dict[str, Any], base_dir: Path, default: str) -> Path:
    configured = Path(_section(data, "logging").get("file") or default)
    return configured if configured.is_absolute() else (base_dir / configured).resolve()


# ── Shared ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class McpIdentity:
    """Identity advertised in the ``initialize`` reply."""

    name: str
    version: str
    protocol_version: str = DEFAULT_PROTOCOL_VERSION

    @classmethod
    def from_section(cls, section: dict[str, Any], default_name: str) -> McpIdentity:
        return cls(
            name=str(section.get("name") or default_name),
            version=str(section.get("version") or "1.0.0"),
            protocol_version=str(section.get("protocolVersion") or DEFAULT_PROTOCOL_VERSION),
        )


# ── Agent Broker ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LLMConfig:
    """Translation upstream settings (the ``llm`` section)."""

    base_url: str
    completions_path: str
    model: str
    max_tokens: int
    system_prompt: str
    api_key: str = ""
    anthropic_version: str = "2023-06-01"
    timeout_seconds: float = 30.0

    @property
    def sdk_base_url(self) -> str:
        """Base URL for AsyncAnthropic, which appends ``/v1/messages`` itself."""
        full = self.base_url.rstrip("/") + self.completions_path
        return full[: -len(_MESSAGES_PATH)]

    @classmethod
    def from_section(cls, section: dict[str, Any]) -> LLMConfig:
        endpoints = section.get("endpoints") or {}
        completions = str(endpoints.get("completions") or _MESSAGES_PATH)
        if not completions.endswith(_MESSAGES_PATH):
            raise ConfigError(
                f"llm.endpoints.completions must end with {_MESSAGES_PATH!r}, got {completions!r}"
            )
        try:
            max_tokens = int(section.get("max_tokens") or 1024)
            timeout = float(section.get("timeoutSeconds") or 30)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric value in llm section: {exc}") from exc
        return cls(
            base_url=str(_require(section, "baseUrl", "llm.baseUrl")),
            completions_path=completions,
            model=str(_require(section, "provider", "llm.provider")),
            max_tokens=max_tokens,
            system_prompt=str(_require(section, "systemPrompt", "llm.systemPrompt")),
            api_key=str(section.get("api-key") or ""),
            anthropic_version=str(section.get("anthropic-version") or "2023-06-01"),
            timeout_seconds=timeout,
        )


@dataclass(frozen=True)
class AgentConfig:
    """Configuration for the Agent Broker process."""

    api_url: str
    llm: LLMConfig
    mcp: McpIdentity
    log_file: Path
    crud_timeout_seconds: float = 15.0

    @classmethod
    def from_file(cls, path: Path) -> AgentConfig:
        data = _read_json(path)
        database = _section(data, "database")
        try:
            crud_timeout = float(database.get("timeoutSeconds") or 15)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid database.timeoutSeconds: {exc}") from exc
        config = cls(
            api_url=str(_require(database, "apiUrl", "database.apiUrl")).rstrip("/"),
            llm=LLMConfig.from_section(_section(data, "llm")),
            mcp=McpIdentity.from_section(_section(data, "mcp"), "leedz-mcp"),
            log_file=_log_path(data, path.parent, "./mcp_server.log"),
            crud_timeout_seconds=crud_timeout,
        )
        logger.debug("Loaded agent config from %s", path)
        return config


# ── Mail Broker ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MailConfig:
    """Configuration for the Mail Broker process."""

    mcp: McpIdentity
    log_file: Path
    port: int = 3001
    host: str = "127.0.0.1"
    allowed_origin: str = "*"
    send_url: str = GMAIL_SEND_URL
    service_version: str = "1.0.0"

    @classmethod
    def from_file(cls, path: Path, environ: Mapping[str, str] | None = None) -> MailConfig:
        """Load the mail config; ``PORT`` in the environment overrides ``http.port``."""
        env = os.environ if environ is None else environ
        data = _read_json(path)
        http = _section(data, "http")
        raw_port = env.get("PORT") or http.get("port") or 3001
        try:
            port = int(raw_port)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid HTTP port {raw_port!r}") from exc
        mcp = McpIdentity.from_section(_section(data, "mcp"), "gmail-mcp")
        config = cls(
            mcp=mcp,
            log_file=_log_path(data, path.parent, "./gmail_mcp.log"),
            port=port,
            host=str(http.get("host") or "127.0.0.1"),
            allowed_origin=str(http.get("allowedOrigin") or "*"),
            send_url=str(_section(data, "gmail").get("sendUrl") or GMAIL_SEND_URL),
            service_version=mcp.version,
        )
        logger.debug("Loaded mail config from %s", path)
        return config
