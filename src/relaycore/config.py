"""
Dispatcher configuration.

Values come from environment variables (see DispatcherConfig.from_env) and are
clamped to safe minimums, so a misconfigured deployment degrades instead of
spinning or starving.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_set(name: str) -> FrozenSet[str]:
    raw = os.getenv(name, "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass
class DispatcherConfig:
    """Tuning knobs for OutboxDispatcher."""

    batch_size: int = 10
    concurrency: int = 4
    lease_duration_ms: int = 30_000
    heartbeat_ms: int = 10_000
    max_attempts: int = 3
    retry_base_delay_ms: int = 5_000
    retry_max_delay_ms: int = 120_000
    retry_jitter_ms: int = 250
    event_timeout_ms: Optional[int] = None
    poll_interval: float = 1.0
    tick_max_ms: int = 10_000
    tick_max_items: int = 500
    # Event types that share an extra concurrency limit (e.g. heavy renders)
    limited_event_types: FrozenSet[str] = field(default_factory=frozenset)
    limited_concurrency: int = 1

    def __post_init__(self):
        self.batch_size = max(1, self.batch_size)
        self.concurrency = max(1, self.concurrency)
        self.lease_duration_ms = max(1_000, self.lease_duration_ms)
        self.heartbeat_ms = max(500, self.heartbeat_ms)
        self.max_attempts = max(1, self.max_attempts)
        self.retry_base_delay_ms = max(100, self.retry_base_delay_ms)
        self.retry_max_delay_ms = max(self.retry_base_delay_ms, self.retry_max_delay_ms)
        self.retry_jitter_ms = max(0, self.retry_jitter_ms)
        if self.event_timeout_ms is None or self.event_timeout_ms <= 0:
            self.event_timeout_ms = max(1_000, int(self.lease_duration_ms * 0.75))
        self.poll_interval = max(0.01, self.poll_interval)
        self.tick_max_ms = max(1, self.tick_max_ms)
        self.tick_max_items = max(1, self.tick_max_items)
        self.limited_event_types = frozenset(self.limited_event_types)
        self.limited_concurrency = max(1, self.limited_concurrency)

    @property
    def heartbeat_interval_ms(self) -> int:
        """How often a delivery extends its lease; always shorter than the lease."""
        return min(max(500, self.heartbeat_ms), max(500, self.lease_duration_ms - 250))

    @classmethod
    def from_env(cls) -> "DispatcherConfig":
        """
        Environment Variables:
            OUTBOX_BATCH_SIZE, OUTBOX_CONCURRENCY, OUTBOX_LEASE_DURATION_MS,
            OUTBOX_LEASE_HEARTBEAT_MS, OUTBOX_MAX_ATTEMPTS, OUTBOX_RETRY_BASE_MS,
            OUTBOX_RETRY_MAX_MS, OUTBOX_RETRY_JITTER_MS, OUTBOX_EVENT_TIMEOUT_MS,
            OUTBOX_POLL_INTERVAL (seconds), OUTBOX_TICK_MAX_MS, OUTBOX_TICK_MAX_ITEMS,
            OUTBOX_LIMITED_EVENT_TYPES (comma-separated), OUTBOX_LIMITED_CONCURRENCY
        """
        timeout = _env_int("OUTBOX_EVENT_TIMEOUT_MS", 0)
        return cls(
            batch_size=_env_int("OUTBOX_BATCH_SIZE", 10),
            concurrency=_env_int("OUTBOX_CONCURRENCY", 4),
            lease_duration_ms=_env_int("OUTBOX_LEASE_DURATION_MS", 30_000),
            heartbeat_ms=_env_int("OUTBOX_LEASE_HEARTBEAT_MS", 10_000),
            max_attempts=_env_int("OUTBOX_MAX_ATTEMPTS", 3),
            retry_base_delay_ms=_env_int("OUTBOX_RETRY_BASE_MS", 5_000),
            retry_max_delay_ms=_env_int("OUTBOX_RETRY_MAX_MS", 120_000),
            retry_jitter_ms=_env_int("OUTBOX_RETRY_JITTER_MS", 250),
            event_timeout_ms=timeout if timeout > 0 else None,
            poll_interval=_env_float("OUTBOX_POLL_INTERVAL", 1.0),
            tick_max_ms=_env_int("OUTBOX_TICK_MAX_MS", 10_000),
            tick_max_items=_env_int("OUTBOX_TICK_MAX_ITEMS", 500),
            limited_event_types=_env_set("OUTBOX_LIMITED_EVENT_TYPES"),
            limited_concurrency=_env_int("OUTBOX_LIMITED_CONCURRENCY", 1),
        )
