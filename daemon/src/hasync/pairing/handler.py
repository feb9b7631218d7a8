"""Pairing protocol handler.

Turns a valid PIN plus a device's public key into a paired Client:

1. Look up the unused session for the PIN and check its expiry
2. Reject public keys that are already bound to a client
3. Derive a certificate and insert the Client
4. Consume the PIN with an atomic update (exactly one row)
5. Record `pairing_completed` in the audit trail

Expired and already-used PINs fail with the same message so callers
cannot tell the two apart.
"""

import logging
import re
from typing import Any, Optional, Protocol

from hasync.audit import AuditLogger
from hasync.crypto import generate_certificate, key_fingerprint
from hasync.errors import AuthenticationError, ConflictError, ValidationError
from hasync.models import Client, now_ms
from hasync.pairing.session_manager import PairingSessionManager

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{6}$")
DEVICE_TYPES = frozenset({"mobile", "desktop", "tablet", "other"})
MAX_DEVICE_NAME_LENGTH = 100
MAX_PUBLIC_KEY_LENGTH = 4096

INVALID_PIN_MESSAGE = "Invalid or expired PIN"


class PairingClientStore(Protocol):
    """Protocol for the client side of the store used during pairing."""

    async def get_client_by_public_key(self, public_key: str) -> Optional[Client]:
        ...

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
        ...

    async def delete_client(self, client_id: str) -> bool:
        ...


def validate_pairing_request(
    pin: Any, device_name: Any, device_type: Any, public_key: Any
) -> None:
    """Validate pairing completion fields.

    Raises:
        ValidationError: Describing the first invalid field.
    """
    if not isinstance(pin, str) or not PIN_PATTERN.match(pin):
        raise ValidationError("PIN must be a 6-digit string")
    if not isinstance(device_name, str) or not device_name.strip():
        raise ValidationError("Device name is required")
    if len(device_name) > MAX_DEVICE_NAME_LENGTH:
        raise ValidationError(
            f"Device name must be at most {MAX_DEVICE_NAME_LENGTH} characters"
        )
    if device_type not in DEVICE_TYPES:
        raise ValidationError(
            f"Device type must be one of: {', '.join(sorted(DEVICE_TYPES))}"
        )
    if not isinstance(public_key, str) or not public_key.strip():
        raise ValidationError("Public key is required")
    if len(public_key) > MAX_PUBLIC_KEY_LENGTH:
        raise ValidationError("Public key is too long")


class PairingHandler:
    """Completes pairing for a device presenting a PIN."""

    def __init__(
        self,
        sessions: PairingSessionManager,
        store: PairingClientStore,
        audit: AuditLogger,
    ):
        self._sessions = sessions
        self._store = store
        self._audit = audit

    async def complete_pairing(
        self,
        pin: str,
        device_name: str,
        device_type: str,
        public_key: str,
        ip: Optional[str] = None,
    ) -> Client:
        """Bind a device's public key to a new Client.

        Returns:
            The new Client, including its certificate. This is the only
            time the certificate leaves the server.

        Raises:
            ValidationError: Malformed fields.
            AuthenticationError: Unknown, expired or already used PIN.
            ConflictError: Public key already paired.
        """
        validate_pairing_request(pin, device_name, device_type, public_key)

        session = await self._sessions.get_session(pin)
        if session is None or session.is_expired():
            logger.warning(f"Pairing rejected: invalid or expired PIN (ip={ip or '-'})")
            raise AuthenticationError(INVALID_PIN_MESSAGE)

        if await self._store.get_client_by_public_key(public_key) is not None:
            logger.warning(
                f"Pairing rejected: key {key_fingerprint(public_key)} already paired"
            )
            raise ConflictError("Client already paired")

        now = now_ms()
        certificate = generate_certificate(public_key, now)

        client = await self._store.create_client(
            name=device_name,
            device_type=device_type,
            public_key=public_key,
            certificate=certificate,
            paired_at=now,
            last_seen=now,
            metadata={},
        )

        # No failure past this point may leave the key bound to a client
        try:
            consumed = await self._sessions.mark_used(pin)
            if consumed:
                await self._audit.log(
                    "pairing_completed", client.id, f"Device: {device_name}", ip
                )
        except BaseException:
            await self._discard_client(client)
            raise

        if not consumed:
            await self._discard_client(client)
            logger.warning(f"Pairing rejected: PIN consumed concurrently (ip={ip or '-'})")
            raise AuthenticationError(INVALID_PIN_MESSAGE)

        logger.info(
            f"Device paired: {device_name} ({device_type}, {client.id[:8]}...)"
        )
        return client

    async def _discard_client(self, client: Client) -> None:
        try:
            await self._store.delete_client(client.id)
        except Exception as e:
            logger.error(f"Could not remove half-paired client {client.id[:8]}...: {e}")
