"""``telemetry-hub``: run the API, bus consumer and WebSocket server."""

from __future__ import annotations

import argparse
import logging

import uvicorn

from common.config import get_settings

from .main import create_app


def main() -> None:
    settings = get_settings()
    p = argparse.ArgumentParser(description="IoT telemetry hub server")
    p.add_argument("--host", default=settings.host)
    p.add_argument("--port", type=int, default=settings.port)
    p.add_argument("--log-level", default=settings.log_level)
    args = p.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        ws_ping_interval=settings.ws_heartbeat_interval,
        ws_ping_timeout=settings.ws_heartbeat_timeout,
    )


if __name__ == "__main__":
    main()
