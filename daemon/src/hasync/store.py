"""SQLite-backed persistence for pairing sessions, clients and the activity log."""

import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from hasync.errors import ConflictError, StorageError
from hasync.models import ActivityLogEntry, Client, PairingSession, now_ms

logger = logging.getLogger(__name__)

# Foreign keys stay unenforced so audit rows may outlive a deleted client.
SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    device_type TEXT NOT NULL,
    public_key TEXT NOT NULL UNIQUE,
    certificate TEXT NOT NULL,
    paired_at INTEGER NOT NULL,
    last_seen INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    metadata TEXT DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS pairing_sessions (
    id TEXT PRIMARY KEY,
    pin TEXT NOT NULL UNIQUE,
    expires_at INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    used INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id TEXT,
    action TEXT NOT NULL,
    details TEXT,
    ip_address TEXT,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_clients_active ON clients(is_active);
CREATE INDEX IF NOT EXISTS idx_clients_last_seen ON clients(last_seen);
CREATE INDEX IF NOT EXISTS idx_pairing_expires ON pairing_sessions(expires_at);
CREATE INDEX IF NOT EXISTS idx_activity_timestamp ON activity_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_activity_client ON activity_log(client_id);
"""

_UPDATABLE_CLIENT_FIELDS = ("name", "last_seen", "is_active", "metadata")


def generate_id() -> str:
    """Generate a random record identifier (32 hex chars)."""
    return secrets.token_hex(16)


class SqliteStore:
    """Persistent store for the pairing subsystem.

    Every statement runs in autocommit mode on a single connection owned by
    the event loop thread, so each call is atomic on its own. Store failures
    surface as StorageError and are never retried here.
    """

    def __init__(self, path: str | Path = ":memory:"):
        """Initialize store.

        Args:
            path: Database file, or ":memory:" for a private in-memory database.
        """
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None

    async def open(self) -> None:
        """Open the database and create the schema if needed."""
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            logger.error(f"Failed to open database {self.path}: {e}")
            raise StorageError(f"Failed to open database: {e}") from e
        self._conn = conn
        logger.debug(f"Opened database at {self.path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        if self._conn is None:
            raise StorageError("Store is not open")
        try:
            yield self._conn.cursor()
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            raise StorageError(str(e)) from e

    # =========================================================================
    # Pairing sessions
    # =========================================================================

    async def create_pairing_session(self, pin: str, expires_at: int) -> PairingSession:
        """Insert a new pairing session.

        Raises:
            ConflictError: If a session row with this PIN still exists.
        """
        session = PairingSession(
            id=generate_id(), pin=pin, created_at=now_ms(), expires_at=expires_at
        )
        try:
            with self._cursor() as cur:
                cur.execute(
                    "INSERT INTO pairing_sessions (id, pin, expires_at, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (session.id, session.pin, session.expires_at, session.created_at),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("PIN already issued") from e
        return session

    async def get_pairing_session(self, pin: str) -> Optional[PairingSession]:
        """Get the unused session for a PIN, expired or not."""
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT * FROM pairing_sessions WHERE pin = ? AND used = 0", (pin,)
            ).fetchone()
        return PairingSession.from_row(row) if row else None

    async def delete_pairing_session(self, pin: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM pairing_sessions WHERE pin = ?", (pin,))
            return cur.rowcount > 0

    async def delete_stale_pairing_session(self, pin: str, now: int) -> int:
        """Delete a used or expired session row holding this PIN."""
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM pairing_sessions WHERE pin = ? AND (used = 1 OR expires_at < ?)",
                (pin, now),
            )
            return cur.rowcount

    async def mark_pairing_session_used(self, pin: str) -> int:
        """Atomically consume a PIN.

        Returns:
            Rows affected; 0 means the PIN was already consumed or swept.
        """
        with self._cursor() as cur:
            cur.execute(
                "UPDATE pairing_sessions SET used = 1 WHERE pin = ? AND used = 0", (pin,)
            )
            return cur.rowcount

    async def clean_expired_pairing_sessions(self, now: Optional[int] = None) -> int:
        """Delete expired or used sessions and return how many were removed."""
        cutoff = now if now is not None else now_ms()
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM pairing_sessions WHERE expires_at < ? OR used = 1", (cutoff,)
            )
            return cur.rowcount

    # =========================================================================
    # Clients
    # =========================================================================

    async def create_client(
        self,
        name: str,
        device_type: str,
        public_key: str,
        certificate: str,
        paired_at: int,
        last_seen: int,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Client:
        """Insert a new active client.

        Raises:
            ConflictError: If the public key is already bound to a client.
        """
        client = Client(
            id=generate_id(),
            name=name,
            device_type=device_type,
            public_key=public_key,
            certificate=certificate,
            paired_at=paired_at,
            last_seen=last_seen,
            is_active=True,
            metadata=metadata or {},
        )
        try:
            with self._cursor() as cur:
                cur.execute(
                    "INSERT INTO clients (id, name, device_type, public_key, certificate, "
                    "paired_at, last_seen, is_active, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)",
                    (
                        client.id,
                        client.name,
                        client.device_type,
                        client.public_key,
                        client.certificate,
                        client.paired_at,
                        client.last_seen,
                        json.dumps(client.metadata),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Client already paired") from e
        return client

    async def get_client(self, client_id: str) -> Optional[Client]:
        with self._cursor() as cur:
            row = cur.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
        return Client.from_row(row) if row else None

    async def get_client_by_public_key(self, public_key: str) -> Optional[Client]:
        with self._cursor() as cur:
            row = cur.execute(
                "SELECT * FROM clients WHERE public_key = ?", (public_key,)
            ).fetchone()
        return Client.from_row(row) if row else None

    async def get_all_clients(self, active_only: bool = False) -> list[Client]:
        query = "SELECT * FROM clients"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY last_seen DESC"
        with self._cursor() as cur:
            rows = cur.execute(query).fetchall()
        return [Client.from_row(r) for r in rows]

    async def update_client(self, client_id: str, **updates: Any) -> bool:
        """Update selected client fields.

        Args:
            client_id: Client to update.
            **updates: Any of name, last_seen, is_active, metadata.

        Returns:
            True if a row was updated, False if the client does not exist
            or no updatable field was given.
        """
        fields: list[str] = []
        values: list[Any] = []
        for key in _UPDATABLE_CLIENT_FIELDS:
            if key not in updates:
                continue
            value = updates[key]
            if key == "is_active":
                value = 1 if value else 0
            elif key == "metadata":
                value = json.dumps(value or {})
            fields.append(f"{key} = ?")
            values.append(value)

        if not fields:
            return False

        values.append(client_id)
        with self._cursor() as cur:
            cur.execute(f"UPDATE clients SET {', '.join(fields)} WHERE id = ?", values)
            return cur.rowcount > 0

    async def delete_client(self, client_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM clients WHERE id = ?", (client_id,))
            return cur.rowcount > 0

    # =========================================================================
    # Activity log
    # =========================================================================

    async def log_activity(
        self,
        client_id: Optional[str],
        action: str,
        details: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> None:
        """Append an activity log entry."""
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO activity_log (client_id, action, details, ip_address, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (client_id, action, details, ip, now_ms()),
            )

    async def get_activity(
        self, limit: int = 100, client_id: Optional[str] = None
    ) -> list[ActivityLogEntry]:
        """Read activity entries, newest first."""
        query = "SELECT * FROM activity_log"
        params: list[Any] = []
        if client_id is not None:
            query += " WHERE client_id = ?"
            params.append(client_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._cursor() as cur:
            rows = cur.execute(query, params).fetchall()
        return [ActivityLogEntry.from_row(r) for r in rows]
