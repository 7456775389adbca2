"""Runtime settings for the relay agent.

Every knob has a default matching the reference deployment (a collector on
127.0.0.1:5000). ``RelaySettings.from_env`` overlays ``EVENTRELAY_*``
environment variables, and explicit keyword arguments win over both.
"""

import os
import platform
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "EVENTRELAY_"

DEFAULT_FLUSH_INTERVAL = 15.0
DEFAULT_BATCH_SIZE = 200
DEFAULT_RETRY_LIMIT = 3
DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_DELAY = 30.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 10
DEFAULT_STORE_MAX_EVENTS = 100_000


def default_client_agent() -> str:
    """Identity string sent with every batch."""
    return f"eventrelay ({platform.system()} {platform.release()}; Python {platform.python_version()})"


class RelaySettings(BaseModel):
    """Validated, immutable agent configuration.

    Attributes:
        collector_http_url: Fallback request endpoint (POST).
        collector_ws_url: Persistent stream endpoint.
        flush_interval: Seconds between delivery cycles.
        batch_size: Maximum events per batch.
        retry_limit: Failed attempts before a fingerprint stops being tracked.
        reconnect_base_delay: First reconnect delay in seconds.
        reconnect_max_delay: Cap on the reconnect delay in seconds.
        max_reconnect_attempts: Scheduled reconnects before giving up until
            connectivity is restored.
        handshake_timeout: Seconds allowed for the stream handshake.
        send_timeout: Seconds allowed for one stream send.
        request_timeout: Seconds allowed for one fallback request.
        store_timeout: Seconds allowed for one store call in the cycle.
        connectivity_poll_interval: Seconds between reachability polls; 0
            disables polling.
        store: Store implementation to build.
        store_path: SQLite file for the "sqlite" store.
        redis_url: Connection URL for the "redis" store.
        store_max_events: Retention cap with oldest-first eviction; 0 is
            unbounded.
        client_agent: Agent identity reported with each batch.
    """

    collector_http_url: str = "http://127.0.0.1:5000/events"
    collector_ws_url: str = "ws://127.0.0.1:5000/ws"
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL, gt=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    retry_limit: int = Field(default=DEFAULT_RETRY_LIMIT, gt=0)
    reconnect_base_delay: float = Field(default=DEFAULT_RECONNECT_BASE_DELAY, gt=0)
    reconnect_max_delay: float = Field(default=DEFAULT_RECONNECT_MAX_DELAY, gt=0)
    max_reconnect_attempts: int = Field(default=DEFAULT_MAX_RECONNECT_ATTEMPTS, ge=0)
    handshake_timeout: float = Field(default=10.0, gt=0)
    send_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    store_timeout: float = Field(default=10.0, gt=0)
    connectivity_poll_interval: float = Field(default=30.0, ge=0)
    store: Literal["memory", "sqlite", "redis"] = "sqlite"
    store_path: Path = Path("eventrelay.db")
    redis_url: str = "redis://localhost:6379"
    store_max_events: int = Field(default=DEFAULT_STORE_MAX_EVENTS, ge=0)
    client_agent: str = Field(default_factory=default_client_agent)

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("collector_http_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if urlparse(v).scheme not in ("http", "https"):
            raise ValueError(f"collector_http_url must be http(s), got: {v!r}")
        return v

    @field_validator("collector_ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        if urlparse(v).scheme not in ("ws", "wss"):
            raise ValueError(f"collector_ws_url must be ws(s), got: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_backoff(self) -> "RelaySettings":
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_base_delay")
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> "RelaySettings":
        """Build settings from ``EVENTRELAY_*`` variables plus overrides.

        Variable names are the upper-cased field names, e.g.
        ``EVENTRELAY_FLUSH_INTERVAL=5``. Values are coerced by pydantic.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update(overrides)
        return cls(**values)

    @property
    def collector_host(self) -> tuple[str, int]:
        """(host, port) of the request endpoint, for reachability checks."""
        parsed = urlparse(self.collector_http_url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return parsed.hostname or "127.0.0.1", port
