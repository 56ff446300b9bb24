"""Shared pytest fixtures."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from leedz_broker.config import LLMConfig


class FakeClock:
    """Manually advanced clock for token-expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(
        base_url="https://llm.example.test",
        completions_path="/v1/messages",
        model="claude-test",
        max_tokens=512,
        system_prompt="Reply with one ActionPlan JSON object.",
        api_key="file-key",
        timeout_seconds=30.0,
    )


@pytest.fixture
def agent_config_data() -> dict[str, object]:
    """A complete agent config file body."""
    return {
        "database": {"apiUrl": "http://127.0.0.1:3000/"},
        "llm": {
            "baseUrl": "https://api.anthropic.com",
            "endpoints": {"completions": "/v1/messages"},
            "provider": "claude-test",
            "max_tokens": 1024,
            "systemPrompt": "Translate requests.",
            "api-key": "sk-file",
            "anthropic-version": "2023-06-01",
        },
        "mcp": {"name": "leedz-mcp", "version": "2.0.0"},
        "logging": {"file": "./logs/mcp_server.log"},
    }


@pytest.fixture
def tmp_config(tmp_path: Path):
    """Write a dict as JSON into tmp_path and return the file path."""

    def _write(data: object, name: str = "config.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
