"""Tests for daemon orchestration."""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from hasync.config import Config
from hasync.daemon import Daemon, StartupError
from hasync.homeassistant import HomeAssistantClient
from hasync.store import SqliteStore


@pytest.fixture
def config(tmp_path) -> Config:
    """Create test config."""
    config = Config()
    config.port = 0  # Random available port
    config.bind_address = "127.0.0.1"
    config.database_file = str(tmp_path / "hasync.db")
    return config


class TestDaemonLifecycle:
    """Test start, serve and shutdown."""

    @pytest.mark.asyncio
    async def test_start_serves_api(self, config):
        daemon = Daemon(config=config)
        await daemon.start()
        try:
            assert daemon.is_running
            port = daemon._get_server_port()
            assert port != 0

            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{port}/api/pairing/pin") as resp:
                    assert resp.status == 200
                    body = await resp.json()
            assert len(body["data"]["pin"]) == 6
        finally:
            await daemon._shutdown()

        assert not daemon.is_running

    @pytest.mark.asyncio
    async def test_run_forever_stops_on_stop(self, config):
        daemon = Daemon(config=config)
        task = asyncio.create_task(daemon.run_forever())

        for _ in range(50):
            if daemon.is_running:
                break
            await asyncio.sleep(0.05)
        await daemon.stop()
        await asyncio.wait_for(task, timeout=5)

        assert not daemon.is_running
        assert not daemon.sessions.is_running

    @pytest.mark.asyncio
    async def test_uses_configured_timers(self, config):
        config.pairing.pin_ttl = 120
        config.realtime.heartbeat_interval = 15
        daemon = Daemon(config=config, store=SqliteStore())
        await daemon.start()
        try:
            assert daemon.sessions.pin_ttl == 120
            assert daemon.channel.heartbeat.interval == 15
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_port_in_use(self, config):
        first = Daemon(config=config, store=SqliteStore())
        await first.start()
        try:
            config.port = first._get_server_port()
            second = Daemon(config=config, store=SqliteStore())
            with pytest.raises(StartupError):
                await second.start()
        finally:
            await first._shutdown()

    @pytest.mark.asyncio
    async def test_bad_database_path(self, config, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        config.database_file = str(blocker / "hasync.db")

        with pytest.raises(StartupError):
            await Daemon(config=config).start()


class TestHomeAssistantWiring:
    """Test forwarder selection."""

    @pytest.mark.asyncio
    async def test_configured_home_assistant(self, config):
        config.homeassistant.url = "http://ha.local:8123"
        config.homeassistant.token = "token"
        daemon = Daemon(config=config, store=SqliteStore())
        await daemon.start()
        try:
            assert isinstance(daemon.channel._service_caller, HomeAssistantClient)
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_injected_service_caller(self, config):
        caller = AsyncMock()
        daemon = Daemon(config=config, store=SqliteStore(), service_caller=caller)
        await daemon.start()
        try:
            assert daemon.channel._service_caller is caller
        finally:
            await daemon._shutdown()

    @pytest.mark.asyncio
    async def test_unconfigured_home_assistant(self, config):
        daemon = Daemon(config=config, store=SqliteStore())
        await daemon.start()
        try:
            assert daemon.channel._service_caller is None
        finally:
            await daemon._shutdown()
