"""
OpenTelemetry Metrics

Counters and histograms for the outbox dispatcher and use-case executor.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

# Global meter
_meter: Optional[metrics.Meter] = None

# Metric instruments
_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}

COUNTERS = {
    "outbox_enqueued_total": "Outbox events appended",
    "outbox_claimed_total": "Outbox events claimed by a dispatcher",
    "outbox_sent_total": "Outbox events delivered",
    "outbox_retried_total": "Outbox deliveries rescheduled with backoff",
    "outbox_failed_total": "Outbox events moved to FAILED",
    "outbox_skipped_total": "Outbox resolutions skipped after losing the lease",
    "idempotency_hits_total": "Use-case executions answered from the idempotency store",
    "usecase_executions_total": "Use-case handler invocations",
}

HISTOGRAMS = {
    "outbox_delivery_duration_seconds": "Outbox delivery duration",
    "outbox_tick_duration_seconds": "Dispatcher tick duration",
}


def init_metrics(
    service_name: str = "relaycore",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds

    Returns:
        Configured meter
    """
    global _meter

    readers = []

    if otlp_endpoint:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: OTLP exporter configured -> %s", otlp_endpoint)

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    resource = Resource.create({SERVICE_NAME: service_name})
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    _meter = metrics.get_meter(service_name)
    _counters.clear()
    _histograms.clear()

    logger.info("OTel metrics initialized: %s", service_name)
    return _meter


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("relaycore")
    return _meter


def _counter(name: str) -> Optional[metrics.Counter]:
    if name not in COUNTERS:
        return None
    if name not in _counters:
        _counters[name] = get_meter().create_counter(name, description=COUNTERS[name], unit="1")
    return _counters[name]


def _histogram(name: str) -> Optional[metrics.Histogram]:
    if name not in HISTOGRAMS:
        return None
    if name not in _histograms:
        _histograms[name] = get_meter().create_histogram(name, description=HISTOGRAMS[name], unit="s")
    return _histograms[name]


def record_counter(
    name: str,
    value: int = 1,
    attributes: Dict[str, Any] = None
):
    """Record a counter metric. Unknown names are ignored."""
    counter = _counter(name)
    if counter is not None:
        counter.add(value, attributes or {})


def record_histogram(
    name: str,
    value: float,
    attributes: Dict[str, Any] = None
):
    """Record a histogram metric. Unknown names are ignored."""
    histogram = _histogram(name)
    if histogram is not None:
        histogram.record(value, attributes or {})
