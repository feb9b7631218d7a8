"""A single realtime WebSocket connection and its auth state."""

import asyncio
import logging
import secrets
import time
from enum import Enum
from typing import Any, Iterable, Optional

from aiohttp import WSCloseCode

from hasync.realtime.frames import Frame, error_frame

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Realtime connection states.

    CONNECTED -> AUTHENTICATED -> CLOSED, or CONNECTED -> CLOSED.
    """

    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class RealtimeConnection:
    """Wraps a WebSocket with the per-connection state machine.

    The connection starts unauthenticated. Only `authenticate()` moves it to
    AUTHENTICATED, and nothing moves it back; `close()` and `terminate()`
    end it for good.
    """

    def __init__(self, ws: Any, remote: Optional[str] = None, transport: Any = None):
        """Initialize connection.

        Args:
            ws: aiohttp WebSocketResponse (or compatible).
            remote: Peer address, for logging.
            transport: Underlying transport, aborted by `terminate()`.
        """
        self.connection_id = secrets.token_hex(8)
        self.ws = ws
        self.remote = remote or "unknown"
        self._transport = transport
        self.state = ConnectionState.CONNECTED
        self.client_id: Optional[str] = None
        # None means subscribed to every entity
        self.entity_filter: Optional[frozenset[str]] = None
        self.is_alive = True
        self.connected_at = time.time()
        self.last_activity = self.connected_at
        self._send_lock = asyncio.Lock()

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED or self.ws.closed

    def authenticate(self, client_id: str) -> None:
        """Transition CONNECTED -> AUTHENTICATED.

        Raises:
            ValueError: If the connection is not in CONNECTED state.
        """
        if self.state is not ConnectionState.CONNECTED:
            raise ValueError(f"Invalid transition: {self.state} -> AUTHENTICATED")
        self.state = ConnectionState.AUTHENTICATED
        self.client_id = client_id

    def subscribe(self, entity_ids: Optional[Iterable[str]]) -> None:
        """Set the broadcast filter; None subscribes to everything."""
        self.entity_filter = frozenset(entity_ids) if entity_ids is not None else None

    def wants(self, entity_id: str) -> bool:
        """Whether an update for this entity should be delivered."""
        return self.entity_filter is None or entity_id in self.entity_filter

    def mark_alive(self) -> None:
        self.is_alive = True
        self.last_activity = time.time()

    async def send(self, frame: Frame) -> bool:
        """Send a frame if the connection is still open.

        Returns:
            True if the frame was written.
        """
        if self.is_closed:
            return False
        await self._write(frame)
        return True

    async def _write(self, frame: Frame) -> None:
        async with self._send_lock:
            await self.ws.send_str(frame.to_json())

    async def send_error(self, message: str) -> bool:
        return await self.send(error_frame(message))

    async def ping(self) -> None:
        """Send a protocol-level ping."""
        if not self.is_closed:
            await self.ws.ping()

    async def close(
        self, code: int = WSCloseCode.POLICY_VIOLATION, reason: str = ""
    ) -> None:
        """Server-initiated close with a close frame."""
        if self.state is ConnectionState.CLOSED and self.ws.closed:
            return
        self.state = ConnectionState.CLOSED
        if not self.ws.closed:
            await self.ws.close(code=code, message=reason.encode("utf-8"))

    async def close_with_error(
        self,
        message: str,
        code: int = WSCloseCode.POLICY_VIOLATION,
        timeout: float = 5.0,
    ) -> None:
        """Send a last error frame, then close.

        Never raises: a socket that is already dead is aborted instead.
        The connection counts as closed from the first call, so no other
        frame is sent on it meanwhile.
        """
        self.state = ConnectionState.CLOSED
        if not self.ws.closed:
            try:
                await asyncio.wait_for(self._write(error_frame(message)), timeout=timeout)
            except Exception as e:
                logger.debug(f"Final error frame to {self!r} not sent: {e!r}")
        try:
            await self.close(code, message)
        except Exception as e:
            logger.debug(f"Close of {self!r} failed: {e!r}")
            self.terminate()

    def terminate(self) -> None:
        """Drop the connection without a closing handshake."""
        self.state = ConnectionState.CLOSED
        if self._transport is not None and not self._transport.is_closing():
            self._transport.abort()
        else:
            asyncio.ensure_future(self.close(code=WSCloseCode.GOING_AWAY))

    def __repr__(self) -> str:
        who = self.client_id[:8] if self.client_id else "anonymous"
        return f"<RealtimeConnection {self.connection_id} {who} {self.state.value}>"
