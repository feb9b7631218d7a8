"""Route incoming realtime frames to handlers by type."""

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

# Handler type: async function taking (connection, frame)
Handler = Callable[[Any, Any], Coroutine[Any, Any, None]]


class FrameDispatcher:
    """Route frames to registered handlers by type.

    Handlers are registered as privileged or not; the caller decides what
    privileged means (the channel requires an authenticated active client).
    """

    def __init__(self, handler_timeout: float = 30.0):
        """Initialize dispatcher.

        Args:
            handler_timeout: Maximum time for a handler to complete (seconds).
        """
        self._handlers: dict[str, Handler] = {}
        self._privileged: set[str] = set()
        self._handler_timeout = handler_timeout

    def register(self, frame_type: str, handler: Handler, privileged: bool = False) -> None:
        """Register a handler for a frame type.

        Args:
            frame_type: Type identifier (e.g., "auth", "call_service").
            handler: Async function(connection, frame).
            privileged: Whether the frame needs an authenticated client.
        """
        self._handlers[frame_type] = handler
        if privileged:
            self._privileged.add(frame_type)
        else:
            self._privileged.discard(frame_type)
        logger.debug(f"Registered handler for: {frame_type}")

    def has_handler(self, frame_type: str) -> bool:
        return frame_type in self._handlers

    def is_privileged(self, frame_type: str) -> bool:
        return frame_type in self._privileged

    async def dispatch(self, conn: Any, frame: Any) -> bool:
        """Dispatch a frame to its handler.

        Returns:
            False if no handler is registered for the frame type.

        Raises:
            asyncio.TimeoutError: If the handler exceeds the timeout.
        """
        handler = self._handlers.get(frame.type)
        if handler is None:
            logger.warning(f"No handler for frame type: {frame.type}")
            return False

        await asyncio.wait_for(handler(conn, frame), timeout=self._handler_timeout)
        return True
