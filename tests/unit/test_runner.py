"""
Tests for the dispatcher runner's wiring helpers.
"""

import pytest

from relaycore.outbox import HandlerRegistry
from relaycore.outbox.runner import OutboxRunner, _parse_args, load_publisher

registry = HandlerRegistry()


class ExamplePublisher:
    async def deliver(self, event):
        return None


def make_publisher():
    return ExamplePublisher()


class TestLoadPublisher:
    def test_instance(self):
        assert load_publisher(f"{__name__}:registry") is registry

    def test_class_and_factory(self):
        assert isinstance(load_publisher(f"{__name__}:ExamplePublisher"), ExamplePublisher)
        assert isinstance(load_publisher(f"{__name__}:make_publisher"), ExamplePublisher)

    def test_bad_target(self):
        with pytest.raises(ValueError):
            load_publisher("no_colon_here")

    def test_not_a_publisher(self):
        with pytest.raises(TypeError):
            load_publisher("builtins:dict")


class TestRunner:
    def test_parse_args(self, monkeypatch):
        monkeypatch.delenv("OUTBOX_PUBLISHER", raising=False)
        args = _parse_args(["--publisher", "pkg.mod:pub", "--shutdown-timeout", "3"])
        assert args.publisher == "pkg.mod:pub"
        assert args.shutdown_timeout == 3.0

    def test_publisher_from_env(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_PUBLISHER", "pkg.mod:pub")
        assert _parse_args([]).publisher == "pkg.mod:pub"

    @pytest.mark.asyncio
    async def test_health_before_start(self):
        runner = OutboxRunner(ExamplePublisher())
        health = await runner.health_check()
        assert health == {"status": "unhealthy", "running": False, "shutdown_requested": False}

    @pytest.mark.asyncio
    async def test_request_shutdown(self):
        runner = OutboxRunner(ExamplePublisher())
        runner.request_shutdown()
        health = await runner.health_check()
        assert health["shutdown_requested"] is True
