from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Store
    database_url: str
    db_connect_retries: int

    # MQTT bus
    mqtt_enabled: bool
    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: str | None
    mqtt_password: str | None
    mqtt_client_id: str
    mqtt_topic_root: str
    mqtt_keepalive: int
    mqtt_connect_timeout: float
    mqtt_reconnect_min_delay: int
    mqtt_reconnect_max_delay: int
    mqtt_inbound_queue_size: int

    # Weather upstream
    weather_api_url: str
    weather_timeout_seconds: float
    weather_default_latitude: float
    weather_default_longitude: float
    weather_poll_interval_seconds: float

    # WebSocket push channel
    ws_heartbeat_interval: float
    ws_heartbeat_timeout: float
    ws_outbound_queue_size: int

    # Read API
    pagination_max_limit: int

    # Orphan readings: keep | drop | expire
    orphan_reading_policy: str
    orphan_reading_ttl_hours: float

    # Auth / server
    admin_api_key: str | None
    environment: str
    cors_origin: str
    log_level: str
    host: str
    port: int

    # Simulator
    simulation_interval_seconds: float

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("TELEMETRY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./telemetry.db"),
        db_connect_retries=int(os.getenv("DB_CONNECT_RETRIES", "5")),
        mqtt_enabled=_env_bool("MQTT_ENABLED", "true"),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "telemetry-hub"),
        mqtt_topic_root=os.getenv("MQTT_TOPIC_ROOT", "csir"),
        mqtt_keepalive=int(os.getenv("MQTT_KEEPALIVE", "60")),
        mqtt_connect_timeout=float(os.getenv("MQTT_CONNECT_TIMEOUT", "5")),
        mqtt_reconnect_min_delay=int(os.getenv("MQTT_RECONNECT_MIN_DELAY", "1")),
        mqtt_reconnect_max_delay=int(os.getenv("MQTT_RECONNECT_MAX_DELAY", "30")),
        mqtt_inbound_queue_size=int(os.getenv("MQTT_INBOUND_QUEUE_SIZE", "10000")),
        weather_api_url=os.getenv("WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast"),
        weather_timeout_seconds=float(os.getenv("WEATHER_TIMEOUT_SECONDS", "8")),
        weather_default_latitude=float(os.getenv("WEATHER_DEFAULT_LATITUDE", "-25.75")),
        weather_default_longitude=float(os.getenv("WEATHER_DEFAULT_LONGITUDE", "28.19")),
        weather_poll_interval_seconds=float(os.getenv("WEATHER_POLL_INTERVAL_SECONDS", "0")),
        ws_heartbeat_interval=float(os.getenv("WS_HEARTBEAT_INTERVAL", "25")),
        ws_heartbeat_timeout=float(os.getenv("WS_HEARTBEAT_TIMEOUT", "60")),
        ws_outbound_queue_size=int(os.getenv("WS_OUTBOUND_QUEUE_SIZE", "256")),
        pagination_max_limit=int(os.getenv("PAGINATION_MAX_LIMIT", "100")),
        orphan_reading_policy=os.getenv("ORPHAN_READING_POLICY", "keep").strip().lower(),
        orphan_reading_ttl_hours=float(os.getenv("ORPHAN_READING_TTL_HOURS", "720")),
        admin_api_key=os.getenv("ADMIN_API_KEY") or None,
        environment=os.getenv("ENVIRONMENT", "development"),
        cors_origin=os.getenv("CORS_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
        simulation_interval_seconds=float(os.getenv("SIMULATION_INTERVAL_SECONDS", "5")),
    )
