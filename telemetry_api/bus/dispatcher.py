"""Single dispatch loop draining the inbound channel.

One loop means per-topic ordering holds end to end: a message is fully
handled (persist + broadcast) before the next one is taken.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple

from ..domain.topics import TopicRouter
from ..metrics import BUS_HANDLER_LATENCY, BUS_MESSAGES_FAILED, BUS_MESSAGES_PROCESSED, BUS_MESSAGES_RECEIVED
from .channel import BusMessage, InboundChannel
from .stats import BusStats

logger = logging.getLogger(__name__)

Handler = Callable[[str, bytes], Awaitable[Optional[bool]]]


class BusDispatcher:
    """Routes each message to the handler of its most specific matching pattern.

    Handlers are expected to contain their own failures and return False for
    a message they dropped; anything that still escapes is logged and counted
    here so the loop keeps running.
    """

    def __init__(self, channel: InboundChannel, stats: Optional[BusStats] = None):
        self._channel = channel
        self.stats = stats or BusStats()
        self._router: TopicRouter[Tuple[str, Handler]] = TopicRouter()
        self._task: Optional[asyncio.Task] = None

    def route(self, pattern: str, handler: Handler, label: Optional[str] = None) -> None:
        self._router.register(pattern, (label or pattern, handler))

    @property
    def patterns(self) -> List[str]:
        return self._router.patterns

    async def dispatch(self, message: BusMessage) -> bool:
        """Handle one message. Returns False when no route matched."""
        self.stats.received += 1
        self.stats.last_message_at = message.received_at

        target = self._router.resolve(message.topic)
        if target is None:
            self.stats.unrouted += 1
            logger.debug("[MQTT] No route for topic=%s", message.topic)
            return False

        label, handler = target
        BUS_MESSAGES_RECEIVED.labels(topic_class=label).inc()
        started = time.perf_counter()
        try:
            handled = await handler(message.topic, message.payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.stats.failed += 1
            BUS_MESSAGES_FAILED.labels(topic_class=label, reason="handler_error").inc()
            logger.exception("[MQTT] Handler for %s failed on topic=%s", label, message.topic)
        else:
            if handled is False:
                # Already counted under its drop reason by the handler.
                self.stats.failed += 1
            else:
                self.stats.processed += 1
                BUS_MESSAGES_PROCESSED.labels(topic_class=label).inc()
        finally:
            BUS_HANDLER_LATENCY.observe(time.perf_counter() - started)
        return True

    async def run(self) -> None:
        logger.info("[MQTT] Dispatcher started routes=%s", self.patterns)
        while True:
            message = await self._channel.get()
            if message is None:
                break
            await self.dispatch(message)
        logger.info("[MQTT] Dispatcher stopped. %s", self.stats)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="bus-dispatcher")
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """Close the channel and let the loop drain; cancel if it overruns."""
        self._channel.close()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            logger.warning("[MQTT] Dispatcher did not drain within %.1fs, cancelled", timeout)
        self._task = None
