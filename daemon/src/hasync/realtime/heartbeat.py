"""
Heartbeat monitor for realtime connection liveness.

Every `interval` seconds each tracked connection is checked:
- If it has not answered the previous ping it is terminated (no close frame)
- Otherwise it is marked pending and pinged again

A pong (protocol level or a `pong` frame) marks the connection alive.
Unauthenticated connections are tracked too, so idle sockets that never
authenticate are reaped the same way.
"""

import asyncio
import logging
from typing import Optional

from hasync.realtime.connection import RealtimeConnection

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """Pings all connections on a fixed interval and reaps dead ones.

    Usage:
        monitor = HeartbeatMonitor(interval=30.0)
        await monitor.start()

        monitor.on_connection_added(conn)
        monitor.on_pong(conn)
        monitor.on_connection_removed(conn)

        await monitor.stop()
    """

    def __init__(self, interval: float = 30.0):
        """Initialize the heartbeat monitor.

        Args:
            interval: Seconds between ping rounds.
        """
        self.interval = interval
        self._connections: dict[str, RealtimeConnection] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the heartbeat loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"HeartbeatMonitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the heartbeat loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("HeartbeatMonitor stopped")

    def on_connection_added(self, conn: RealtimeConnection) -> None:
        """Start tracking a new connection."""
        conn.is_alive = True
        self._connections[conn.connection_id] = conn

    def on_connection_removed(self, conn: RealtimeConnection) -> None:
        """Stop tracking a connection."""
        self._connections.pop(conn.connection_id, None)

    def on_pong(self, conn: RealtimeConnection) -> None:
        """Record a pong for a connection."""
        conn.mark_alive()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, conn: RealtimeConnection) -> bool:
        return conn.connection_id in self._connections

    async def check_connections(self) -> list[RealtimeConnection]:
        """Run one ping round.

        Returns:
            Connections terminated in this round.
        """
        terminated = []

        for conn in list(self._connections.values()):
            if conn.is_closed:
                self._connections.pop(conn.connection_id, None)
                continue

            if not conn.is_alive:
                logger.warning(f"No pong from {conn!r}, terminating")
                self._connections.pop(conn.connection_id, None)
                conn.terminate()
                terminated.append(conn)
                continue

            conn.is_alive = False
            try:
                await conn.ping()
            except Exception as e:
                logger.warning(f"Failed to ping {conn!r}: {e}")

        return terminated

    async def _heartbeat_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.check_connections()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat loop error: {e}")
