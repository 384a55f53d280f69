"""CLI entry point for the telemetry simulator (``telemetry-simulator``)."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import uuid

from common.config import get_settings

from ..bus.client import BusClient, BusConfig
from ..domain.topics import TopicScheme
from ..errors import BusConnectionError
from .simulator import WEATHER_INTERVAL_SECONDS, TelemetrySimulator

logger = logging.getLogger(__name__)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    config = BusConfig(
        host=args.host or settings.mqtt_broker_host,
        port=args.port or settings.mqtt_broker_port,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        client_id=f"csir-iot-simulator-{uuid.uuid4().hex[:8]}",
        connect_timeout=settings.mqtt_connect_timeout,
        reconnect_min_delay=settings.mqtt_reconnect_min_delay,
        reconnect_max_delay=settings.mqtt_reconnect_max_delay,
    )
    bus = BusClient(config)
    try:
        await bus.connect()
    except BusConnectionError as e:
        logger.error("[SIM] %s", e.message)
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; Ctrl+C still raises KeyboardInterrupt.
            pass

    simulator = TelemetrySimulator(
        bus,
        TopicScheme(args.topic_root or settings.mqtt_topic_root),
        interval=args.interval or settings.simulation_interval_seconds,
        weather_interval=args.weather_interval,
    )
    try:
        await simulator.run(stop, max_ticks=args.ticks or None)
    finally:
        # Let the offline notice leave before the socket closes.
        await asyncio.sleep(0.2)
        await bus.disconnect()
    return 0


def main() -> None:
    p = argparse.ArgumentParser(description="Publish simulated sensor telemetry to the MQTT bus")
    p.add_argument("--host", help="broker host (default: MQTT_BROKER_HOST)")
    p.add_argument("--port", type=int, help="broker port (default: MQTT_BROKER_PORT)")
    p.add_argument("--topic-root", help="topic root (default: MQTT_TOPIC_ROOT)")
    p.add_argument("--interval", type=float, help="seconds between readings (default: SIMULATION_INTERVAL_SECONDS)")
    p.add_argument("--weather-interval", type=float, default=WEATHER_INTERVAL_SECONDS)
    p.add_argument("--ticks", type=int, default=0, help="stop after N ticks (0 = run until interrupted)")
    p.add_argument("--log-level", default=None)
    args = p.parse_args()

    logging.basicConfig(
        level=(args.log_level or get_settings().log_level).upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
