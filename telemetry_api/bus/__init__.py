"""MQTT bus: client, inbound channel, dispatcher.

Flow:
    broker -> BusClient (paho thread) -> InboundChannel -> BusDispatcher -> handlers
"""

from .channel import BusMessage, InboundChannel
from .client import BusClient, BusConfig
from .dispatcher import BusDispatcher
from .stats import BusStats

__all__ = ["BusClient", "BusConfig", "BusDispatcher", "BusMessage", "BusStats", "InboundChannel"]
