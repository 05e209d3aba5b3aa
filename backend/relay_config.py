import os
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class RelayConfig(BaseModel):
    """Tunables for the relay connection, channel handshake and request lifecycle."""

    model_config = ConfigDict(extra='forbid')

    url: str = "ws://localhost:3055"
    default_channel: Optional[str] = None

    # Request deadlines
    default_timeout_ms: int = Field(default=30000, gt=0)
    join_timeout_ms: int = Field(default=10000, gt=0)

    # Connection establishment (bounded retries with doubling backoff)
    connect_timeout_s: float = Field(default=10.0, gt=0)
    connect_max_attempts: int = Field(default=3, ge=1)
    connect_retry_delay: float = Field(default=1.0, ge=0)
    connect_max_retry_delay: float = Field(default=30.0, ge=0)

    # 0 disables the cap
    max_pending: int = Field(default=0, ge=0)
    # Consecutive unparsable frames before the stream is treated as corrupt
    max_consecutive_malformed: int = Field(default=5, ge=1)

    @classmethod
    def from_env(cls, **overrides) -> "RelayConfig":
        """Build a config from FIGMA_* environment variables; explicit overrides win."""
        values = {
            "url": os.getenv("FIGMA_RELAY_URL", "ws://localhost:3055"),
            "default_channel": os.getenv("FIGMA_CHANNEL") or None,
            "default_timeout_ms": os.getenv("FIGMA_TOOL_TIMEOUT_MS", "30000"),
            "join_timeout_ms": os.getenv("FIGMA_JOIN_TIMEOUT_MS", "10000"),
            "connect_timeout_s": os.getenv("FIGMA_CONNECT_TIMEOUT", "10"),
            "connect_max_attempts": os.getenv("FIGMA_CONNECT_ATTEMPTS", "3"),
            "connect_retry_delay": os.getenv("FIGMA_CONNECT_RETRY_DELAY", "1.0"),
            "connect_max_retry_delay": os.getenv("FIGMA_CONNECT_MAX_RETRY_DELAY", "30.0"),
            "max_pending": os.getenv("FIGMA_MAX_PENDING", "0"),
            "max_consecutive_malformed": os.getenv("FIGMA_MAX_MALFORMED", "5"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        logger.debug(f"⚙️ Relay config loaded: {config.model_dump()}")
        return config
