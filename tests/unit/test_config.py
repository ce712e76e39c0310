"""
Tests for dispatcher configuration.
"""

import pytest

from relaycore.config import DispatcherConfig


class TestDefaults:
    def test_defaults(self):
        config = DispatcherConfig()
        assert config.batch_size == 10
        assert config.lease_duration_ms == 30_000
        assert config.max_attempts == 3
        assert config.retry_base_delay_ms == 5_000
        assert config.retry_max_delay_ms == 120_000
        assert config.retry_jitter_ms == 250
        # Timeout defaults to three quarters of the lease
        assert config.event_timeout_ms == 22_500


class TestClamping:
    """Bad values degrade to safe minimums instead of breaking the loop."""

    def test_minimums(self):
        config = DispatcherConfig(
            batch_size=0,
            concurrency=-1,
            lease_duration_ms=10,
            heartbeat_ms=1,
            max_attempts=0,
            retry_base_delay_ms=1,
            retry_max_delay_ms=1,
            retry_jitter_ms=-5,
        )
        assert config.batch_size == 1
        assert config.concurrency == 1
        assert config.lease_duration_ms == 1_000
        assert config.heartbeat_ms == 500
        assert config.max_attempts == 1
        assert config.retry_base_delay_ms == 100
        assert config.retry_max_delay_ms == 100
        assert config.retry_jitter_ms == 0
        assert config.event_timeout_ms == 1_000

    def test_heartbeat_stays_inside_the_lease(self):
        assert DispatcherConfig(lease_duration_ms=30_000, heartbeat_ms=10_000).heartbeat_interval_ms == 10_000
        assert DispatcherConfig(lease_duration_ms=2_000, heartbeat_ms=10_000).heartbeat_interval_ms == 1_750
        assert DispatcherConfig(lease_duration_ms=1_000, heartbeat_ms=500).heartbeat_interval_ms == 500


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_BATCH_SIZE", "25")
        monkeypatch.setenv("OUTBOX_CONCURRENCY", "8")
        monkeypatch.setenv("OUTBOX_LEASE_DURATION_MS", "60000")
        monkeypatch.setenv("OUTBOX_EVENT_TIMEOUT_MS", "15000")
        monkeypatch.setenv("OUTBOX_POLL_INTERVAL", "0.5")
        monkeypatch.setenv("OUTBOX_LIMITED_EVENT_TYPES", "report.render, invoice.pdf ,")

        config = DispatcherConfig.from_env()

        assert config.batch_size == 25
        assert config.concurrency == 8
        assert config.lease_duration_ms == 60_000
        assert config.event_timeout_ms == 15_000
        assert config.poll_interval == 0.5
        assert config.limited_event_types == frozenset({"report.render", "invoice.pdf"})

    def test_unset_timeout_uses_lease(self, monkeypatch):
        monkeypatch.delenv("OUTBOX_EVENT_TIMEOUT_MS", raising=False)
        monkeypatch.setenv("OUTBOX_LEASE_DURATION_MS", "40000")
        assert DispatcherConfig.from_env().event_timeout_ms == 30_000

    def test_invalid_number(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_BATCH_SIZE", "lots")
        with pytest.raises(ValueError, match="OUTBOX_BATCH_SIZE"):
            DispatcherConfig.from_env()
