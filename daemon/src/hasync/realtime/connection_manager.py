"""Registry of authenticated realtime connections, keyed by client_id."""

import asyncio
import logging
from typing import Callable, Optional

from aiohttp import WSCloseCode

from hasync.realtime.connection import ConnectionState, RealtimeConnection
from hasync.realtime.frames import Frame

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Track authenticated connections and broadcast to them.

    Holds at most one connection per client_id. This is the only
    in-process shared state of the realtime channel; running several
    daemon processes against one database would split it.
    """

    def __init__(self, send_timeout: float = 5.0):
        """Initialize registry.

        Args:
            send_timeout: Timeout for a single send during broadcast and
                for the last error frame to a displaced connection.
        """
        self.connections: dict[str, RealtimeConnection] = {}
        self.send_timeout = send_timeout
        self._lock = asyncio.Lock()
        self._close_tasks: set[asyncio.Task] = set()

    async def register(self, client_id: str, conn: RealtimeConnection) -> Optional[RealtimeConnection]:
        """Register the live connection for a client.

        A previous connection for the same client_id is force-closed.

        Returns:
            The displaced connection, if any.
        """
        old_conn = None

        async with self._lock:
            existing = self.connections.get(client_id)
            if existing is not None and existing is not conn:
                logger.info(f"Replacing existing connection for {client_id[:8]}...")
                old_conn = existing
            self.connections[client_id] = conn

        # Close old connection outside lock; its socket may already be dead
        if old_conn is not None:
            old_conn.state = ConnectionState.CLOSED
            self.schedule_close(old_conn, "Replaced by a newer connection")

        return old_conn

    def schedule_close(self, conn: RealtimeConnection, reason: str) -> asyncio.Task:
        """Close a connection in the background with a last error frame."""
        task = asyncio.create_task(
            conn.close_with_error(reason, WSCloseCode.POLICY_VIOLATION, self.send_timeout)
        )
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)
        return task

    async def unregister(self, client_id: str, conn: Optional[RealtimeConnection] = None) -> bool:
        """Remove a client's connection.

        Args:
            client_id: Client to remove.
            conn: If given, only remove when it is still the registered one.

        Returns:
            True if an entry was removed.
        """
        async with self._lock:
            current = self.connections.get(client_id)
            if current is None or (conn is not None and current is not conn):
                return False
            del self.connections[client_id]
        logger.debug(f"Unregistered connection for {client_id[:8]}...")
        return True

    def get(self, client_id: str) -> Optional[RealtimeConnection]:
        """Get the live connection for a client."""
        return self.connections.get(client_id)

    async def broadcast(
        self,
        frame: Frame,
        predicate: Optional[Callable[[RealtimeConnection], bool]] = None,
    ) -> int:
        """Send a frame to every authenticated connection (best effort).

        Args:
            frame: Frame to send.
            predicate: Optional filter on connections.

        Returns:
            Number of connections the frame was delivered to.
        """
        async with self._lock:
            conns = [
                c for c in self.connections.values()
                if c.is_authenticated and (predicate is None or predicate(c))
            ]

        if not conns:
            return 0

        async def send_with_timeout(
            conn: RealtimeConnection,
        ) -> tuple[RealtimeConnection, Optional[Exception]]:
            try:
                sent = await asyncio.wait_for(conn.send(frame), timeout=self.send_timeout)
                if not sent:
                    return (conn, ConnectionError("connection closed"))
                return (conn, None)
            except asyncio.TimeoutError:
                return (conn, TimeoutError(f"Send timeout to {conn.client_id}"))
            except Exception as e:
                return (conn, e)

        results = await asyncio.gather(*[send_with_timeout(c) for c in conns])

        delivered = 0
        for conn, error in results:
            if error is None:
                delivered += 1
            else:
                logger.warning(f"Broadcast to {conn.client_id[:8]}... failed: {error}")
        return delivered

    async def close_all(self) -> None:
        """Close all connections gracefully."""
        async with self._lock:
            conns = list(self.connections.values())
            self.connections.clear()

        if conns:
            await asyncio.gather(
                *[c.close(WSCloseCode.GOING_AWAY, "Server shutdown") for c in conns],
                return_exceptions=True,
            )
        if self._close_tasks:
            await asyncio.gather(*self._close_tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self.connections)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self.connections
