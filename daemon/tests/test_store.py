"""Tests for the SQLite store."""

import pytest

from hasync.errors import ConflictError, StorageError
from hasync.models import now_ms
from hasync.store import SqliteStore


async def make_client(store, public_key="pk-1", name="Phone", last_seen=None):
    now = now_ms()
    return await store.create_client(
        name=name,
        device_type="mobile",
        public_key=public_key,
        certificate="a" * 64,
        paired_at=now,
        last_seen=last_seen if last_seen is not None else now,
    )


class TestStoreLifecycle:
    """Test opening and closing."""

    @pytest.mark.asyncio
    async def test_open_creates_database_file(self, tmp_path):
        """Opening a file-backed store creates parent dirs and schema."""
        db_path = tmp_path / "nested" / "hasync.db"
        store = SqliteStore(db_path)

        await store.open()
        await store.log_activity(None, "startup")
        await store.close()

        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        """Clients persist across restarts."""
        db_path = tmp_path / "hasync.db"
        store = SqliteStore(db_path)
        await store.open()
        client = await make_client(store)
        await store.close()

        reopened = SqliteStore(db_path)
        await reopened.open()
        loaded = await reopened.get_client(client.id)
        await reopened.close()

        assert loaded == client

    @pytest.mark.asyncio
    async def test_closed_store_raises_storage_error(self):
        """Using a store that is not open raises StorageError."""
        store = SqliteStore()

        with pytest.raises(StorageError):
            await store.get_client("x")


class TestPairingSessions:
    """Test pairing session persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        """A created session is returned by PIN."""
        expires_at = now_ms() + 300_000
        created = await store.create_pairing_session("123456", expires_at)

        session = await store.get_pairing_session("123456")

        assert session == created
        assert session.used is False
        assert len(session.id) == 32

    @pytest.mark.asyncio
    async def test_duplicate_pin_conflicts(self, store):
        """A PIN row can exist only once."""
        await store.create_pairing_session("123456", now_ms() + 1000)

        with pytest.raises(ConflictError):
            await store.create_pairing_session("123456", now_ms() + 1000)

    @pytest.mark.asyncio
    async def test_mark_used_is_single_shot(self, store):
        """Only the first mark-used affects a row."""
        await store.create_pairing_session("123456", now_ms() + 1000)

        assert await store.mark_pairing_session_used("123456") == 1
        assert await store.mark_pairing_session_used("123456") == 0
        assert await store.get_pairing_session("123456") is None

    @pytest.mark.asyncio
    async def test_clean_expired_removes_expired_and_used(self, store):
        """Sweep removes expired and used rows only."""
        now = now_ms()
        await store.create_pairing_session("000001", now - 1)
        await store.create_pairing_session("000002", now + 60_000)
        await store.create_pairing_session("000003", now + 60_000)
        await store.mark_pairing_session_used("000003")

        removed = await store.clean_expired_pairing_sessions(now)

        assert removed == 2
        assert await store.get_pairing_session("000002") is not None
        assert await store.clean_expired_pairing_sessions(now) == 0

    @pytest.mark.asyncio
    async def test_delete_stale_keeps_live_session(self, store):
        """Stale delete never touches a live session."""
        now = now_ms()
        await store.create_pairing_session("111111", now + 60_000)
        await store.create_pairing_session("222222", now - 1)

        assert await store.delete_stale_pairing_session("111111", now) == 0
        assert await store.delete_stale_pairing_session("222222", now) == 1

    @pytest.mark.asyncio
    async def test_delete_pairing_session(self, store):
        """Sessions can be deleted by PIN."""
        await store.create_pairing_session("123456", now_ms() + 1000)

        assert await store.delete_pairing_session("123456") is True
        assert await store.delete_pairing_session("123456") is False


class TestClients:
    """Test client persistence."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, store):
        """Clients are found by id and by public key."""
        client = await make_client(store)

        assert await store.get_client(client.id) == client
        assert await store.get_client_by_public_key("pk-1") == client
        assert client.is_active is True

    @pytest.mark.asyncio
    async def test_public_key_is_unique(self, store):
        """At most one client per public key."""
        await make_client(store)

        with pytest.raises(ConflictError):
            await make_client(store, name="Other")

    @pytest.mark.asyncio
    async def test_get_all_orders_by_last_seen(self, store):
        """Most recently seen first; active filter applies."""
        old = await make_client(store, "pk-old", last_seen=1000)
        new = await make_client(store, "pk-new", last_seen=2000)
        await store.update_client(old.id, is_active=False)

        everyone = await store.get_all_clients()
        active = await store.get_all_clients(active_only=True)

        assert [c.id for c in everyone] == [new.id, old.id]
        assert [c.id for c in active] == [new.id]

    @pytest.mark.asyncio
    async def test_update_client_fields(self, store):
        """Known fields are updated, unknown ones ignored."""
        client = await make_client(store)

        assert await store.update_client(
            client.id, name="Renamed", metadata={"os": "android"}, certificate="x"
        )
        loaded = await store.get_client(client.id)

        assert loaded.name == "Renamed"
        assert loaded.metadata == {"os": "android"}
        assert loaded.certificate == client.certificate

    @pytest.mark.asyncio
    async def test_update_missing_client(self, store):
        """Updating an unknown client reports False."""
        assert await store.update_client("missing", last_seen=1) is False
        assert await store.update_client("missing") is False

    @pytest.mark.asyncio
    async def test_delete_client_keeps_activity(self, store):
        """Audit rows outlive the client they describe."""
        client = await make_client(store)
        await store.log_activity(client.id, "pairing_completed")

        assert await store.delete_client(client.id) is True
        assert await store.get_client(client.id) is None
        assert len(await store.get_activity(client_id=client.id)) == 1


class TestActivityLog:
    """Test activity log persistence."""

    @pytest.mark.asyncio
    async def test_newest_first_with_limit(self, store):
        """Entries come back newest first, bounded by limit."""
        for i in range(5):
            await store.log_activity(None, f"action_{i}", ip="10.0.0.1")

        entries = await store.get_activity(limit=3)

        assert [e.action for e in entries] == ["action_4", "action_3", "action_2"]
        assert entries[0].ip == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_filter_by_client(self, store):
        """Entries can be filtered by client id."""
        await store.log_activity("a", "one")
        await store.log_activity("b", "two")

        entries = await store.get_activity(client_id="b")

        assert [e.action for e in entries] == ["two"]
