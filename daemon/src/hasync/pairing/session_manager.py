"""PIN issuance, consumption and periodic cleanup of pairing sessions."""

import asyncio
import logging
from typing import Optional, Protocol

from hasync.crypto import generate_pin
from hasync.errors import ConflictError, StorageError
from hasync.models import PairingSession, now_ms

logger = logging.getLogger(__name__)


class PairingSessionStore(Protocol):
    """Protocol for pairing session persistence."""

    async def create_pairing_session(self, pin: str, expires_at: int) -> PairingSession:
        ...

    async def get_pairing_session(self, pin: str) -> Optional[PairingSession]:
        ...

    async def delete_stale_pairing_session(self, pin: str, now: int) -> int:
        ...

    async def mark_pairing_session_used(self, pin: str) -> int:
        ...

    async def clean_expired_pairing_sessions(self, now: Optional[int] = None) -> int:
        ...


class PairingSessionManager:
    """Issues PINs and sweeps expired or consumed sessions.

    Usage:
        manager = PairingSessionManager(store)
        await manager.start()   # begins the periodic sweep

        session = await manager.generate_pin()

        await manager.stop()
    """

    MAX_PIN_ATTEMPTS = 10

    def __init__(
        self,
        store: PairingSessionStore,
        pin_ttl: float = 300.0,
        sweep_interval: float = 60.0,
    ):
        """Initialize session manager.

        Args:
            store: Persistent store for sessions.
            pin_ttl: Seconds a PIN stays valid.
            sweep_interval: Seconds between cleanup sweeps.
        """
        self._store = store
        self.pin_ttl = pin_ttl
        self.sweep_interval = sweep_interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def generate_pin(self) -> PairingSession:
        """Issue a new PIN valid for `pin_ttl` seconds.

        A drawn PIN that is still live (unused and unexpired) is redrawn.
        A stale row holding the same PIN (expired or used, not yet swept)
        is removed so it never blocks reissuance.

        Raises:
            StorageError: If no free PIN could be drawn.
        """
        for _ in range(self.MAX_PIN_ATTEMPTS):
            pin = generate_pin()
            now = now_ms()

            await self._store.delete_stale_pairing_session(pin, now)
            existing = await self._store.get_pairing_session(pin)
            if existing is not None and not existing.is_expired(now):
                logger.debug("PIN collision with live session, redrawing")
                continue

            expires_at = now + int(self.pin_ttl * 1000)
            try:
                session = await self._store.create_pairing_session(pin, expires_at)
            except ConflictError:
                continue

            logger.info(f"Pairing PIN issued (session {session.id[:8]}..., "
                        f"expires in {int(self.pin_ttl)}s)")
            return session

        raise StorageError("Could not allocate a unique PIN")

    async def get_session(self, pin: str) -> Optional[PairingSession]:
        """Get the unused session for a PIN (may be expired)."""
        return await self._store.get_pairing_session(pin)

    async def mark_used(self, pin: str) -> bool:
        """Consume a PIN with a single atomic update.

        Returns:
            True if exactly this call consumed the PIN.
        """
        return await self._store.mark_pairing_session_used(pin) == 1

    async def sweep(self) -> int:
        """Delete sessions that are expired or used.

        Returns:
            Number of sessions removed.
        """
        cleaned = await self._store.clean_expired_pairing_sessions(now_ms())
        if cleaned > 0:
            logger.info(f"Cleaned {cleaned} expired pairing sessions")
        return cleaned

    async def start(self) -> None:
        """Start the periodic sweep task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"PairingSessionManager started (sweep every {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("PairingSessionManager stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Pairing session sweep error: {e}")
