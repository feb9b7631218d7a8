"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from hasync.audit import AuditLogger
from hasync.config import Config
from hasync.homeassistant import HomeAssistantClient, ServiceCaller
from hasync.pairing import ClientRegistry, PairingHandler, PairingSessionManager
from hasync.realtime import ConnectionRegistry, HeartbeatMonitor, RealtimeChannel
from hasync.server import ApiServer
from hasync.store import SqliteStore

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during daemon startup."""

    pass


class Daemon:
    """Main daemon owning every component.

    Responsibilities:
    - Open the persistent store
    - Wire pairing, client registry, audit and realtime channel
    - Run the session sweeper and heartbeat timers
    - Serve the REST API and the realtime WebSocket
    - Handle graceful shutdown
    """

    def __init__(
        self,
        config: Config,
        store: Optional[SqliteStore] = None,
        service_caller: Optional[ServiceCaller] = None,
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            store: Optional injected store (for testing).
            service_caller: Optional injected Home Assistant forwarder (for testing).
        """
        self._config = config
        self._running = False

        self._store = store
        self._service_caller = service_caller
        self._owns_service_caller = False

        self.audit: Optional[AuditLogger] = None
        self.sessions: Optional[PairingSessionManager] = None
        self.clients: Optional[ClientRegistry] = None
        self.pairing: Optional[PairingHandler] = None
        self.channel: Optional[RealtimeChannel] = None
        self.server: Optional[ApiServer] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the daemon.

        Raises:
            StartupError: If the store cannot be opened or the port is taken.
        """
        logger.info("Starting hasync daemon...")

        await self._initialize_store()
        self._initialize_components()

        await self.sessions.start()
        await self.channel.start()

        try:
            await self.server.start(self._config.bind_address, self._config.port)
        except OSError as e:
            await self._shutdown()
            raise StartupError(f"Cannot listen on port {self._config.port}: {e}") from e

        self._setup_signals()

        self._running = True
        logger.info(f"Daemon started on port {self._get_server_port()}")

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        self._running = False

    async def _initialize_store(self) -> None:
        if self._store is None:
            self._store = SqliteStore(Path(self._config.database_file).expanduser())
        try:
            await self._store.open()
        except Exception as e:
            raise StartupError(f"Cannot open database: {e}") from e

    def _initialize_components(self) -> None:
        config = self._config

        self.audit = AuditLogger(self._store)
        self.sessions = PairingSessionManager(
            self._store,
            pin_ttl=config.pairing.pin_ttl,
            sweep_interval=config.pairing.sweep_interval,
        )
        self.clients = ClientRegistry(self._store, self.audit)
        self.pairing = PairingHandler(self.sessions, self._store, self.audit)

        if self._service_caller is None and config.homeassistant.url and config.homeassistant.token:
            self._service_caller = HomeAssistantClient(
                config.homeassistant.url,
                config.homeassistant.token,
                timeout=config.homeassistant.request_timeout,
            )
            self._owns_service_caller = True
        if self._service_caller is None:
            logger.warning("Home Assistant not configured; call_service is disabled")

        self.channel = RealtimeChannel(
            self.clients,
            connections=ConnectionRegistry(send_timeout=config.realtime.send_timeout),
            heartbeat=HeartbeatMonitor(interval=config.realtime.heartbeat_interval),
            service_caller=self._service_caller,
        )
        self.server = ApiServer(
            sessions=self.sessions,
            pairing=self.pairing,
            clients=self.clients,
            audit=self.audit,
            channel=self.channel,
            admin_token=config.admin_token,
        )

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.create_task(self.stop()))
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not installed")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")

        if self.sessions:
            await self.sessions.stop()

        # Close realtime connections before the HTTP runner cleans up
        if self.channel:
            await self.channel.stop()

        if self.server:
            await self.server.stop()

        if self._owns_service_caller and isinstance(self._service_caller, HomeAssistantClient):
            await self._service_caller.close()

        if self._store:
            await self._store.close()

        self._running = False
        logger.info("Daemon stopped")

    def _get_server_port(self) -> int:
        """Get the port the server is listening on."""
        if self.server and self.server.port:
            return self.server.port
        return self._config.port
