"""Tests for PairingHandler."""

import re
from unittest.mock import AsyncMock, patch

import pytest

from hasync.audit import AuditLogger
from hasync.errors import AuthenticationError, ConflictError, StorageError, ValidationError
from hasync.models import now_ms
from hasync.pairing.handler import (
    INVALID_PIN_MESSAGE,
    PairingHandler,
    validate_pairing_request,
)
from hasync.pairing.session_manager import PairingSessionManager

PUBLIC_KEY = "-----BEGIN PUBLIC KEY-----\nMFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAE\n-----END PUBLIC KEY-----"


@pytest.fixture
def sessions(store):
    return PairingSessionManager(store, pin_ttl=300)


@pytest.fixture
def handler(store, sessions):
    return PairingHandler(sessions, store, AuditLogger(store))


class TestValidatePairingRequest:
    """Test request field validation."""

    def test_valid_request(self):
        validate_pairing_request("012345", "Phone", "mobile", PUBLIC_KEY)

    @pytest.mark.parametrize("pin", ["12345", "1234567", "abcdef", 123456, None])
    def test_bad_pin(self, pin):
        with pytest.raises(ValidationError):
            validate_pairing_request(pin, "Phone", "mobile", PUBLIC_KEY)

    @pytest.mark.parametrize("name", ["", "   ", None, "x" * 101])
    def test_bad_device_name(self, name):
        with pytest.raises(ValidationError):
            validate_pairing_request("123456", name, "mobile", PUBLIC_KEY)

    def test_bad_device_type(self):
        with pytest.raises(ValidationError, match="Device type"):
            validate_pairing_request("123456", "Phone", "toaster", PUBLIC_KEY)

    @pytest.mark.parametrize("key", ["", None, "k" * 4097])
    def test_bad_public_key(self, key):
        with pytest.raises(ValidationError):
            validate_pairing_request("123456", "Phone", "mobile", key)


class TestCompletePairing:
    """Test pairing completion."""

    @pytest.mark.asyncio
    async def test_pairing_scenario(self, store, sessions, handler):
        """Issue, complete, and fail on reuse."""
        before = now_ms()
        session = await sessions.generate_pin()
        assert session.expires_at >= before + 300_000

        client = await handler.complete_pairing(
            session.pin, "Living Room Tablet", "tablet", PUBLIC_KEY, ip="192.168.1.20"
        )

        assert client.device_type == "tablet"
        assert client.is_active is True
        assert re.fullmatch(r"[0-9a-f]{64}", client.certificate)
        assert await store.get_client(client.id) == client

        with pytest.raises(AuthenticationError):
            await handler.complete_pairing(
                session.pin, "Other", "mobile", "another-key"
            )

    @pytest.mark.asyncio
    async def test_pairing_is_audited(self, store, sessions, handler):
        session = await sessions.generate_pin()

        client = await handler.complete_pairing(
            session.pin, "Phone", "mobile", PUBLIC_KEY, ip="10.0.0.2"
        )

        [entry] = await store.get_activity(client_id=client.id)
        assert entry.action == "pairing_completed"
        assert entry.details == "Device: Phone"
        assert entry.ip == "10.0.0.2"

    @pytest.mark.asyncio
    async def test_unknown_pin(self, handler):
        with pytest.raises(AuthenticationError, match=INVALID_PIN_MESSAGE):
            await handler.complete_pairing("999999", "Phone", "mobile", PUBLIC_KEY)

    @pytest.mark.asyncio
    async def test_expired_and_used_pins_look_identical(self, store, sessions, handler):
        """Expired and consumed PINs fail with the same message."""
        await store.create_pairing_session("111111", now_ms() - 1)
        used = await sessions.generate_pin()
        await handler.complete_pairing(used.pin, "Phone", "mobile", PUBLIC_KEY)

        with pytest.raises(AuthenticationError) as expired_err:
            await handler.complete_pairing("111111", "A", "mobile", "key-a")
        with pytest.raises(AuthenticationError) as used_err:
            await handler.complete_pairing(used.pin, "B", "mobile", "key-b")

        assert expired_err.value.message == used_err.value.message == INVALID_PIN_MESSAGE

    @pytest.mark.asyncio
    async def test_public_key_already_paired(self, store, sessions, handler):
        """A second pairing for the same key conflicts and keeps the PIN."""
        first = await sessions.generate_pin()
        await handler.complete_pairing(first.pin, "Phone", "mobile", PUBLIC_KEY)
        second = await sessions.generate_pin()

        with pytest.raises(ConflictError):
            await handler.complete_pairing(second.pin, "Phone 2", "mobile", PUBLIC_KEY)

        assert await sessions.get_session(second.pin) is not None
        assert len(await store.get_all_clients()) == 1

    @pytest.mark.asyncio
    async def test_validation_runs_before_lookup(self, store, handler):
        with pytest.raises(ValidationError):
            await handler.complete_pairing("123456", "Phone", "fridge", PUBLIC_KEY)

    @pytest.mark.asyncio
    async def test_lost_race_rolls_back_client(self, store, sessions, handler):
        """When mark_used loses the race, no client is left behind."""
        session = await sessions.generate_pin()

        with patch.object(sessions, "mark_used", AsyncMock(return_value=False)):
            with pytest.raises(AuthenticationError):
                await handler.complete_pairing(session.pin, "Phone", "mobile", PUBLIC_KEY)

        assert await store.get_all_clients() == []
        assert await store.get_activity() == []

    @pytest.mark.asyncio
    async def test_audit_failure_rolls_back_client(self, store, sessions, handler):
        """A storage error after the insert leaves no client and allows a retry."""
        session = await sessions.generate_pin()

        with patch.object(store, "log_activity", AsyncMock(side_effect=StorageError("disk I/O error"))):
            with pytest.raises(StorageError):
                await handler.complete_pairing(session.pin, "Phone", "mobile", PUBLIC_KEY)

        assert await store.get_client_by_public_key(PUBLIC_KEY) is None

        retry = await sessions.generate_pin()
        client = await handler.complete_pairing(retry.pin, "Phone", "mobile", PUBLIC_KEY)
        assert client.public_key == PUBLIC_KEY

    @pytest.mark.asyncio
    async def test_mark_used_failure_rolls_back_client(self, store, sessions, handler):
        session = await sessions.generate_pin()

        with patch.object(
            store, "mark_pairing_session_used", AsyncMock(side_effect=StorageError("locked"))
        ):
            with pytest.raises(StorageError):
                await handler.complete_pairing(session.pin, "Phone", "mobile", PUBLIC_KEY)

        assert await store.get_all_clients() == []
        assert await store.get_pairing_session(session.pin) is not None
