"""Realtime module for hasync.

Provides the authenticated WebSocket channel including:
- JSON frame codec
- Per-connection auth state machine
- Active-connection registry and broadcast
- Ping/pong liveness monitoring
"""

from .channel import RealtimeChannel
from .connection import ConnectionState, RealtimeConnection
from .connection_manager import ConnectionRegistry
from .frames import Frame, FrameError, FrameType
from .heartbeat import HeartbeatMonitor

__all__ = [
    "ConnectionRegistry",
    "ConnectionState",
    "Frame",
    "FrameError",
    "FrameType",
    "HeartbeatMonitor",
    "RealtimeChannel",
    "RealtimeConnection",
]
