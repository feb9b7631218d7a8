"""Records persisted by the store: pairing sessions, clients, activity log."""

import json
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Optional


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class PairingSession:
    """An issued PIN and its consumption state."""

    id: str
    pin: str
    created_at: int
    expires_at: int
    used: bool = False

    def is_expired(self, now: Optional[int] = None) -> bool:
        """True once the validity window has passed."""
        return (now if now is not None else now_ms()) > self.expires_at

    @property
    def expires_in(self) -> int:
        """Whole seconds until expiry, never negative."""
        return max(0, (self.expires_at - now_ms()) // 1000)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PairingSession":
        return cls(
            id=row["id"],
            pin=row["pin"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            used=bool(row["used"]),
        )


@dataclass
class Client:
    """A paired companion device."""

    id: str
    name: str
    device_type: str
    public_key: str
    certificate: str
    paired_at: int
    last_seen: int
    is_active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self, include_certificate: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON responses.

        The certificate is only ever sent once, in the pairing completion
        response, so it is omitted unless explicitly requested.
        """
        d = {
            "id": self.id,
            "name": self.name,
            "device_type": self.device_type,
            "public_key": self.public_key,
            "paired_at": self.paired_at,
            "last_seen": self.last_seen,
            "is_active": self.is_active,
            "metadata": self.metadata,
        }
        if include_certificate:
            d["certificate"] = self.certificate
        return d

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Client":
        try:
            metadata = json.loads(row["metadata"] or "{}")
        except json.JSONDecodeError:
            metadata = {}
        return cls(
            id=row["id"],
            name=row["name"],
            device_type=row["device_type"],
            public_key=row["public_key"],
            certificate=row["certificate"],
            paired_at=row["paired_at"],
            last_seen=row["last_seen"],
            is_active=bool(row["is_active"]),
            metadata=metadata,
        )


@dataclass(frozen=True)
class ActivityLogEntry:
    """One append-only audit record."""

    id: int
    client_id: Optional[str]
    action: str
    details: Optional[str]
    ip: Optional[str]
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "action": self.action,
            "details": self.details,
            "ip": self.ip,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ActivityLogEntry":
        return cls(
            id=row["id"],
            client_id=row["client_id"],
            action=row["action"],
            details=row["details"],
            ip=row["ip_address"],
            timestamp=row["timestamp"],
        )
