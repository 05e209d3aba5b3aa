from __future__ import annotations

import pytest
from pydantic import ValidationError

from relay_config import RelayConfig


def test_defaults() -> None:
    config = RelayConfig()
    assert config.url == "ws://localhost:3055"
    assert config.default_channel is None
    assert config.default_timeout_ms == 30000
    assert config.max_pending == 0


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("FIGMA_RELAY_URL", "ws://relay.example:4000")
    monkeypatch.setenv("FIGMA_CHANNEL", "design")
    monkeypatch.setenv("FIGMA_TOOL_TIMEOUT_MS", "5000")
    monkeypatch.setenv("FIGMA_MAX_PENDING", "8")

    config = RelayConfig.from_env()

    assert config.url == "ws://relay.example:4000"
    assert config.default_channel == "design"
    assert config.default_timeout_ms == 5000
    assert config.max_pending == 8


def test_overrides_win_over_env(monkeypatch) -> None:
    monkeypatch.setenv("FIGMA_CHANNEL", "from-env")

    config = RelayConfig.from_env(default_channel="from-cli", url=None)

    assert config.default_channel == "from-cli"
    assert config.url == "ws://localhost:3055"


def test_empty_channel_env_means_none(monkeypatch) -> None:
    monkeypatch.setenv("FIGMA_CHANNEL", "")
    assert RelayConfig.from_env().default_channel is None


@pytest.mark.parametrize("field,value", [
    ("default_timeout_ms", 0),
    ("connect_max_attempts", 0),
    ("max_consecutive_malformed", 0),
    ("max_pending", -1),
])
def test_invalid_values_are_rejected(field, value) -> None:
    with pytest.raises(ValidationError):
        RelayConfig(**{field: value})


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        RelayConfig(heartbeat_interval=5)
