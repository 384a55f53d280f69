"""paho-mqtt client owned by the service container.

Threading:
    paho network thread (loop_start) -> loop.call_soon_threadsafe -> event loop

Reconnects are left to paho (``reconnect_delay_set``): the backoff doubles
from ``reconnect_min_delay`` up to ``reconnect_max_delay`` with unlimited
retries. Subscribed patterns are re-sent on every (re)connect. Nothing is
buffered while disconnected.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

import orjson
import paho.mqtt.client as mqtt

from common.config import Settings

from ..domain.topics import validate_pattern
from ..errors import BusConnectionError, SubscriptionError
from ..metrics import BUS_CONNECTED
from .channel import BusMessage, InboundChannel
from .stats import BusStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusConfig:
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "telemetry-hub"
    keepalive: int = 60
    connect_timeout: float = 5.0
    subscribe_timeout: float = 5.0
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "BusConfig":
        return cls(
            host=settings.mqtt_broker_host,
            port=settings.mqtt_broker_port,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            client_id=settings.mqtt_client_id,
            keepalive=settings.mqtt_keepalive,
            connect_timeout=settings.mqtt_connect_timeout,
            subscribe_timeout=settings.mqtt_connect_timeout,
            reconnect_min_delay=settings.mqtt_reconnect_min_delay,
            reconnect_max_delay=settings.mqtt_reconnect_max_delay,
        )


Payload = Union[bytes, str, Dict[str, Any], List[Any]]


class Publisher(Protocol):
    def publish(self, topic: str, payload: Payload, qos: int = 1, retain: bool = False) -> bool: ...


class BusClient:
    """Explicit connect / subscribe / publish / disconnect over one paho client.

    Inbound messages land in ``channel``; routing is the dispatcher's job.
    Without a channel the client is publish-only.
    """

    def __init__(
        self,
        config: BusConfig,
        channel: Optional[InboundChannel] = None,
        stats: Optional[BusStats] = None,
        client_factory: Optional[Callable[[], mqtt.Client]] = None,
    ):
        self.config = config
        self.channel = channel
        self.stats = stats or BusStats()
        self._client_factory = client_factory or self._build_client

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected = False
        self._closing = False
        self._ever_connected = False
        self._connect_event: Optional[asyncio.Event] = None
        self._connect_error: Optional[str] = None

        self._lock = threading.Lock()
        self._patterns: Dict[str, int] = {}
        self._pending_subacks: Dict[int, asyncio.Future] = {}

    @property
    def client_id(self) -> str:
        return self.config.client_id

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    def _build_client(self) -> mqtt.Client:
        return mqtt.Client(
            client_id=self.config.client_id,
            protocol=mqtt.MQTTv311,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def connect(self, timeout: Optional[float] = None) -> None:
        """Start the network loop and wait for CONNACK.

        Raises ``BusConnectionError`` when the broker refuses the connection
        or does not answer within ``timeout``.
        """
        if self._connected:
            return
        timeout = self.config.connect_timeout if timeout is None else timeout
        self._loop = asyncio.get_running_loop()
        self._connect_event = asyncio.Event()
        self._connect_error = None
        self._closing = False
        self._ever_connected = False

        client = self._client_factory()
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        if self.config.username and self.config.password:
            client.username_pw_set(self.config.username, self.config.password)
        client.reconnect_delay_set(
            min_delay=self.config.reconnect_min_delay,
            max_delay=self.config.reconnect_max_delay,
        )
        self._client = client

        logger.info("[MQTT] Connecting to %s:%d", self.config.host, self.config.port)
        try:
            client.connect_async(self.config.host, self.config.port, keepalive=self.config.keepalive)
            client.loop_start()
        except (OSError, ValueError) as e:
            self._client = None
            raise BusConnectionError(f"Could not connect to broker: {e}") from e

        try:
            await asyncio.wait_for(self._connect_event.wait(), timeout)
        except asyncio.TimeoutError:
            self._abort_connect()
            raise BusConnectionError(
                f"Broker {self.config.host}:{self.config.port} did not answer within {timeout:.1f}s"
            ) from None

        if self._connect_error is not None:
            error = self._connect_error
            self._abort_connect()
            raise BusConnectionError(f"Broker refused connection: {error}")

    async def subscribe(self, patterns: Iterable[str], qos: int = 1, timeout: Optional[float] = None) -> None:
        """Subscribe and wait for SUBACK; a rejected pattern raises ``SubscriptionError``."""
        patterns = list(patterns)
        if not patterns:
            return
        for pattern in patterns:
            try:
                validate_pattern(pattern)
            except ValueError as e:
                raise SubscriptionError(str(e)) from e
        if self._client is None or not self._connected or self._loop is None:
            raise SubscriptionError("Bus client is not connected")

        timeout = self.config.subscribe_timeout if timeout is None else timeout
        future: asyncio.Future = self._loop.create_future()
        # SUBACK may arrive on the network thread before the future is registered.
        with self._lock:
            result, mid = self._client.subscribe([(p, qos) for p in patterns])
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise SubscriptionError(f"Subscribe failed: {mqtt.error_string(result)}")
            self._pending_subacks[mid] = future

        try:
            reason_codes = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise SubscriptionError(f"No SUBACK for {patterns} within {timeout:.1f}s") from None
        finally:
            with self._lock:
                self._pending_subacks.pop(mid, None)

        rejected = [p for p, rc in zip(patterns, reason_codes) if rc.is_failure]
        if rejected:
            raise SubscriptionError(f"Broker rejected subscription: {', '.join(rejected)}")

        for pattern in patterns:
            self._patterns[pattern] = qos
        logger.info("[MQTT] Subscribed to %s", ", ".join(patterns))

    def publish(self, topic: str, payload: Payload, qos: int = 1, retain: bool = False) -> bool:
        """Fire-and-forget publish. Returns False (and logs) when it could not be queued."""
        if self._client is None or not self._connected:
            logger.warning("[MQTT] Not connected, dropping publish to %s", topic)
            return False

        if isinstance(payload, (bytes, str)):
            body = payload
        else:
            body = orjson.dumps(payload)

        info = self._client.publish(topic, body, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("[MQTT] Publish to %s failed: %s", topic, mqtt.error_string(info.rc))
            return False
        logger.debug("[MQTT] Published to %s", topic)
        return True

    async def disconnect(self) -> None:
        client = self._client
        if client is None:
            return
        self._closing = True
        try:
            client.disconnect()
            client.loop_stop()
        except (OSError, RuntimeError) as e:
            logger.warning("[MQTT] Disconnect error: %s", e)
        self._client = None
        self._set_connected(False)
        logger.info("[MQTT] Disconnected")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("[MQTT] Connection refused: %s", reason_code)
            if not self._ever_connected:
                self._connect_error = str(reason_code)
                self._signal_connected()
            return

        if self._ever_connected:
            self.stats.reconnects += 1
            logger.info("[MQTT] Reconnected to broker")
        else:
            logger.info("[MQTT] Connected to broker")
        self._ever_connected = True
        self._set_connected(True)

        if self._patterns:
            # Fire-and-forget; failures show up as SUBACK errors in the log.
            client.subscribe(list(self._patterns.items()))
            logger.info("[MQTT] Re-subscribed to %d patterns", len(self._patterns))
        self._signal_connected()

    def _on_connect_fail(self, client, userdata):
        logger.warning("[MQTT] Connection attempt to %s:%d failed", self.config.host, self.config.port)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._set_connected(False)
        if self._closing:
            return
        logger.warning("[MQTT] Connection lost (%s), reconnecting with backoff", reason_code)

    def _on_message(self, client, userdata, msg):
        if self.channel is None:
            return
        message = BusMessage(topic=msg.topic, payload=bytes(msg.payload))
        self._call_in_loop(self.channel.put_nowait, message)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        with self._lock:
            future = self._pending_subacks.get(mid)
        if future is None:
            failed = [rc for rc in reason_code_list if rc.is_failure]
            if failed:
                logger.error("[MQTT] Re-subscription rejected: %s", failed)
            return
        self._call_in_loop(self._resolve, future, list(reason_code_list))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve(future: asyncio.Future, value: Any) -> None:
        if not future.done():
            future.set_result(value)

    def _signal_connected(self) -> None:
        if self._connect_event is not None:
            self._call_in_loop(self._connect_event.set)

    def _call_in_loop(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop shut down between the check and the call.
            logger.debug("[MQTT] Event loop closed, dropping callback")

    def _set_connected(self, value: bool) -> None:
        self._connected = value
        BUS_CONNECTED.set(1 if value else 0)

    def _abort_connect(self) -> None:
        client = self._client
        self._client = None
        self._closing = True
        if client is not None:
            try:
                client.disconnect()
                client.loop_stop()
            except (OSError, RuntimeError) as e:
                logger.debug("[MQTT] Abort connect cleanup: %s", e)
        self._set_connected(False)
