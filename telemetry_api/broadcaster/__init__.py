"""WebSocket push broadcaster."""

from .connection import Connection, ConnectionState, Transport
from .hub import Broadcaster, encode_frame

__all__ = ["Broadcaster", "Connection", "ConnectionState", "Transport", "encode_frame"]
