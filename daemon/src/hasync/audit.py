"""Append-only audit trail of pairing and client events."""

import logging
from typing import Optional, Protocol

from hasync.models import ActivityLogEntry

logger = logging.getLogger(__name__)


class ActivityStore(Protocol):
    """Protocol for activity persistence."""

    async def log_activity(
        self,
        client_id: Optional[str],
        action: str,
        details: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> None:
        ...

    async def get_activity(
        self, limit: int = 100, client_id: Optional[str] = None
    ) -> list[ActivityLogEntry]:
        ...


class AuditLogger:
    """Writes audit events to the store and mirrors them to the log."""

    def __init__(self, store: ActivityStore):
        self._store = store

    async def log(
        self,
        action: str,
        client_id: Optional[str] = None,
        details: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> None:
        """Append an audit entry."""
        await self._store.log_activity(client_id, action, details, ip)
        who = client_id[:8] + "..." if client_id else "-"
        logger.info(f"Audit: {action} client={who} ip={ip or '-'}")

    async def recent(
        self, limit: int = 100, client_id: Optional[str] = None
    ) -> list[ActivityLogEntry]:
        """Most recent entries, newest first."""
        return await self._store.get_activity(limit=limit, client_id=client_id)
