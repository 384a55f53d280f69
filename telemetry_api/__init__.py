"""IoT telemetry hub: MQTT ingestion, persistence and WebSocket fan-out."""

__version__ = "1.0.0"
