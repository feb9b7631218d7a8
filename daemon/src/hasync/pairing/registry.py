"""Client identity registry: certificates, revocation and activity."""

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from hasync.audit import AuditLogger
from hasync.crypto import certificates_equal
from hasync.errors import NotFoundError
from hasync.models import Client, now_ms

logger = logging.getLogger(__name__)

# Called with (client_id, reason) after a client loses access
RevocationListener = Callable[[str, str], Awaitable[None]]


class ClientStore(Protocol):
    """Protocol for client persistence."""

    async def get_client(self, client_id: str) -> Optional[Client]:
        ...

    async def get_all_clients(self, active_only: bool = False) -> list[Client]:
        ...

    async def update_client(self, client_id: str, **updates: Any) -> bool:
        ...

    async def delete_client(self, client_id: str) -> bool:
        ...


class ClientRegistry:
    """Looks up paired clients and decides whether they may authenticate.

    Authentication is a constant-time certificate match against an active
    client. Revocation flips `is_active` to False permanently; listeners
    registered with `on_revoked` are told so they can drop live sessions.
    """

    def __init__(self, store: ClientStore, audit: AuditLogger):
        self._store = store
        self._audit = audit
        self._listeners: list[RevocationListener] = []

    def on_revoked(self, listener: RevocationListener) -> None:
        """Register a callback fired after revoke or delete."""
        self._listeners.append(listener)

    async def get_client(self, client_id: str) -> Client:
        """Get a client by ID.

        Raises:
            NotFoundError: If the client does not exist.
        """
        client = await self._store.get_client(client_id)
        if client is None:
            raise NotFoundError("Client not found")
        return client

    async def list_clients(self, active_only: bool = True) -> list[Client]:
        """All clients, most recently seen first."""
        return await self._store.get_all_clients(active_only=active_only)

    async def verify_certificate(self, client_id: str, certificate: str) -> bool:
        """Check a client's credentials.

        Returns:
            True only if the client exists, is active and the certificate
            matches the stored one.
        """
        client = await self._store.get_client(client_id)
        if client is None or not client.is_active:
            return False
        return certificates_equal(client.certificate, certificate)

    async def is_active(self, client_id: str) -> bool:
        """Current active flag (False for unknown clients)."""
        client = await self._store.get_client(client_id)
        return client is not None and client.is_active

    async def update_activity(self, client_id: str) -> None:
        """Record that the client was just seen.

        Does not check `is_active`; that happens at authentication.
        """
        await self._store.update_client(client_id, last_seen=now_ms())

    async def revoke(self, client_id: str, ip: Optional[str] = None) -> None:
        """Permanently disable a client.

        Revoking an already inactive client is a no-op success.

        Raises:
            NotFoundError: If the client does not exist.
        """
        client = await self.get_client(client_id)

        if client.is_active:
            await self._store.update_client(client_id, is_active=False)
            await self._audit.log(
                "client_revoked", client_id, "Access revoked by admin", ip
            )
            logger.info(f"Client revoked: {client.name} ({client_id[:8]}...)")
        else:
            logger.debug(f"Client {client_id[:8]}... already revoked")

        await self._notify(client_id, "Client access revoked")

    async def delete_client(self, client_id: str, ip: Optional[str] = None) -> None:
        """Hard-delete a client record.

        Raises:
            NotFoundError: If the client does not exist.
        """
        client = await self.get_client(client_id)

        if not await self._store.delete_client(client_id):
            raise NotFoundError("Client not found")

        await self._audit.log("client_deleted", client_id, f"Client: {client.name}", ip)
        logger.info(f"Client deleted: {client.name} ({client_id[:8]}...)")

        await self._notify(client_id, "Client deleted")

    async def _notify(self, client_id: str, reason: str) -> None:
        for listener in self._listeners:
            try:
                await listener(client_id, reason)
            except Exception as e:
                logger.error(f"Revocation listener failed for {client_id[:8]}...: {e}")
