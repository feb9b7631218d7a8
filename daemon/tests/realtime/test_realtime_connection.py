"""Tests for RealtimeConnection."""

import pytest
from aiohttp import WSCloseCode

from hasync.realtime.connection import ConnectionState
from hasync.realtime.frames import Frame


class TestConnectionState:
    """Test the per-connection state machine."""

    def test_starts_unauthenticated(self, make_conn):
        conn = make_conn()

        assert conn.state is ConnectionState.CONNECTED
        assert not conn.is_authenticated
        assert conn.client_id is None

    def test_authenticate(self, make_conn):
        conn = make_conn()

        conn.authenticate("client-1")

        assert conn.is_authenticated
        assert conn.client_id == "client-1"

    def test_authenticate_twice_rejected(self, make_conn):
        """There is no path back to CONNECTED or a second auth."""
        conn = make_conn()
        conn.authenticate("client-1")

        with pytest.raises(ValueError):
            conn.authenticate("client-2")
        assert conn.client_id == "client-1"

    @pytest.mark.asyncio
    async def test_closed_cannot_authenticate(self, make_conn):
        conn = make_conn()
        await conn.close()

        with pytest.raises(ValueError):
            conn.authenticate("client-1")


class TestSubscriptions:
    """Test entity filters."""

    def test_default_wants_everything(self, make_conn):
        assert make_conn().wants("light.kitchen")

    def test_filter(self, make_conn):
        conn = make_conn()
        conn.subscribe(["light.kitchen"])

        assert conn.wants("light.kitchen")
        assert not conn.wants("switch.porch")

    def test_clear_filter(self, make_conn):
        conn = make_conn()
        conn.subscribe(["light.kitchen"])
        conn.subscribe(None)

        assert conn.wants("switch.porch")


class TestSendAndClose:
    """Test I/O helpers."""

    @pytest.mark.asyncio
    async def test_send(self, make_conn):
        conn = make_conn()

        assert await conn.send(Frame("pong"))
        assert conn.ws.frames[0]["type"] == "pong"

    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self, make_conn):
        conn = make_conn()
        await conn.close(WSCloseCode.POLICY_VIOLATION, "bye")

        assert not await conn.send(Frame("pong"))
        assert conn.ws.sent == []
        assert conn.ws.close_code == WSCloseCode.POLICY_VIOLATION
        assert conn.ws.close_message == b"bye"
        assert conn.is_closed

    @pytest.mark.asyncio
    async def test_send_error(self, make_conn):
        conn = make_conn()

        await conn.send_error("Invalid credentials")

        assert conn.ws.errors == ["Invalid credentials"]

    def test_terminate_aborts_transport(self, make_conn):
        """terminate() drops the socket without a close frame."""
        conn = make_conn(with_transport=True)

        conn.terminate()

        conn._transport.abort.assert_called_once()
        assert conn.state is ConnectionState.CLOSED
        assert conn.ws.close_code is None

    @pytest.mark.asyncio
    async def test_ping(self, make_conn):
        conn = make_conn()

        await conn.ping()

        assert conn.ws.pings == 1

    def test_repr_hides_full_id(self, make_conn):
        conn = make_conn()
        conn.authenticate("abcdef0123456789")

        assert "abcdef01" in repr(conn)
        assert "abcdef0123456789" not in repr(conn)
