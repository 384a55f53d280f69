from __future__ import annotations

import logging
import random
import time
from urllib.parse import urlsplit

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)


def _safe_url(url: str) -> str:
    # Host/db only, never credentials.
    parts = urlsplit(url)
    host = parts.hostname or ""
    return f"{parts.scheme}://{host}{parts.path}"


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads
        # (FastAPI threadpool + asyncio.to_thread).
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, future=True, **kwargs)
    else:
        engine = create_engine(
            database_url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
            future=True,
        )

    logger.info("[DB] Engine created url=%s", _safe_url(database_url))
    return engine


def wait_for_database(engine: Engine, max_retries: int = 5) -> None:
    """Block until ``SELECT 1`` succeeds, retrying with exponential backoff.

    Raises the last ``OperationalError`` once ``max_retries`` is exhausted.
    """
    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("[DB] Connection test OK")
            return
        except OperationalError as e:
            if attempt >= max_retries:
                logger.error("[DB] Connection failed after %d attempts: %s", attempt, e)
                raise
            delay = min(1000 * (2 ** attempt), 30000)
            jitter = random.uniform(0, delay * 0.1)
            total_delay = (delay + jitter) / 1000.0
            logger.warning(
                "[DB] Connection attempt %d/%d failed, retrying in %.2fs...",
                attempt, max_retries, total_delay,
            )
            time.sleep(total_delay)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)
