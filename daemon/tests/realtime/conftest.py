"""Shared fixtures for realtime channel tests."""

import json
from unittest.mock import MagicMock

import pytest

from hasync.realtime.connection import RealtimeConnection


class FakeWebSocket:
    """Mock aiohttp WebSocketResponse for testing."""

    def __init__(self, fail_send: bool = False):
        self.closed = False
        self.close_code = None
        self.close_message = None
        self.sent: list[str] = []
        self.pings = 0
        self.fail_send = fail_send

    async def send_str(self, data: str) -> None:
        if self.fail_send:
            raise ConnectionResetError("Connection lost")
        self.sent.append(data)

    async def ping(self, message: bytes = b"") -> None:
        self.pings += 1

    async def close(self, code: int = 1000, message: bytes = b"") -> None:
        self.closed = True
        self.close_code = code
        self.close_message = message

    @property
    def frames(self) -> list[dict]:
        """Sent frames, decoded."""
        return [json.loads(s) for s in self.sent]

    @property
    def errors(self) -> list[str]:
        return [f["payload"]["error"] for f in self.frames if f["type"] == "error"]


@pytest.fixture
def make_conn():
    """Factory for connections backed by a FakeWebSocket."""

    def _make(fail_send: bool = False, with_transport: bool = False) -> RealtimeConnection:
        transport = None
        if with_transport:
            transport = MagicMock()
            transport.is_closing.return_value = False
        return RealtimeConnection(
            FakeWebSocket(fail_send=fail_send), remote="127.0.0.1", transport=transport
        )

    return _make
