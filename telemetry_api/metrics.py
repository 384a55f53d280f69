"""Prometheus metrics exposed at ``/api/health/metrics``."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

BUS_MESSAGES_RECEIVED = Counter(
    "telemetry_bus_messages_received_total",
    "Bus messages received",
    ["topic_class"],
)
BUS_MESSAGES_PROCESSED = Counter(
    "telemetry_bus_messages_processed_total",
    "Bus messages handled without error",
    ["topic_class"],
)
BUS_MESSAGES_FAILED = Counter(
    "telemetry_bus_messages_failed_total",
    "Bus messages dropped by a handler",
    ["topic_class", "reason"],  # parse_error, storage_error, handler_error
)
BUS_INBOUND_DROPPED = Counter(
    "telemetry_bus_inbound_dropped_total",
    "Inbound messages dropped because the channel was full",
)
BUS_CONNECTED = Gauge(
    "telemetry_bus_connected",
    "Bus client connection status",
)
BUS_HANDLER_LATENCY = Histogram(
    "telemetry_bus_handler_seconds",
    "Bus message handling latency",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
READINGS_PERSISTED = Counter(
    "telemetry_readings_persisted_total",
    "Readings written to the store",
    ["path"],  # bus, rest, simulate
)
BROADCAST_DELIVERIES = Counter(
    "telemetry_broadcast_deliveries_total",
    "Frames queued for delivery to connections",
    ["event"],
)
BROADCAST_DROPPED = Counter(
    "telemetry_broadcast_dropped_total",
    "Frames dropped from full outbound queues",
)
WS_CONNECTED_CLIENTS = Gauge(
    "telemetry_ws_connected_clients",
    "Connected WebSocket clients",
)
STORE_BREAKER_STATE = Gauge(
    "telemetry_store_breaker_state",
    "Store circuit breaker state (0 closed, 1 half-open, 2 open)",
    ["breaker"],
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
