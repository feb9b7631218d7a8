"""Authenticated realtime channel over WebSocket.

Protocol:
1. Server -> Client: connected
2. Client -> Server: auth { client_id, certificate }
3. Server -> Client: auth_ok { client_id }   (or error, then close)
4. Client -> Server: subscribe_entities / call_service / ping
5. Server -> Client: entity_update broadcasts

Privileged frames sent before step 3 are answered with
"Authentication required" and have no effect. After step 3 every
privileged frame re-checks that the client is still active.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from hasync.errors import HasyncError
from hasync.homeassistant import ServiceCaller
from hasync.models import now_ms
from hasync.pairing.registry import ClientRegistry
from hasync.realtime.connection import ConnectionState, RealtimeConnection
from hasync.realtime.connection_manager import ConnectionRegistry
from hasync.realtime.dispatcher import FrameDispatcher
from hasync.realtime.frames import PRIVILEGED_TYPES, Frame, FrameError, FrameType
from hasync.realtime.heartbeat import HeartbeatMonitor

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "Authentication required"
REVOKED_MESSAGE = "Client access revoked"

# Home Assistant domain and service identifiers
SERVICE_NAME_PATTERN = re.compile(r"[a-z0-9_]+")


class RealtimeChannel:
    """Owns every realtime connection from accept to close."""

    def __init__(
        self,
        clients: ClientRegistry,
        connections: Optional[ConnectionRegistry] = None,
        heartbeat: Optional[HeartbeatMonitor] = None,
        service_caller: Optional[ServiceCaller] = None,
    ):
        """Initialize channel.

        Args:
            clients: Client registry used for certificate checks.
            connections: Active-connection registry.
            heartbeat: Liveness monitor.
            service_caller: Upstream for call_service frames.
        """
        self._clients = clients
        self.connections = connections or ConnectionRegistry()
        self.heartbeat = heartbeat or HeartbeatMonitor()
        self._service_caller = service_caller

        self._dispatcher = FrameDispatcher()
        handlers = {
            FrameType.AUTH: self._handle_auth,
            FrameType.PING: self._handle_ping,
            FrameType.PONG: self._handle_pong,
            FrameType.SUBSCRIBE_ENTITIES: self._handle_subscribe,
            FrameType.CALL_SERVICE: self._handle_call_service,
        }
        for frame_type, handler in handlers.items():
            self._dispatcher.register(
                frame_type.value, handler, privileged=frame_type.value in PRIVILEGED_TYPES
            )

        clients.on_revoked(self.on_client_revoked)

    async def start(self) -> None:
        await self.heartbeat.start()

    async def stop(self) -> None:
        """Stop the heartbeat and close every connection."""
        await self.heartbeat.stop()
        await self.connections.close_all()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """aiohttp handler for `GET /ws`."""
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)

        conn = RealtimeConnection(ws, remote=request.remote, transport=request.transport)
        self.heartbeat.on_connection_added(conn)
        logger.info(f"Realtime connection from {conn.remote} ({conn.connection_id})")

        try:
            await conn.send(Frame(FrameType.CONNECTED.value, {
                "message": "Connected to hasync realtime channel",
                "timestamp": now_ms(),
            }))

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.handle_text(conn, msg.data)
                elif msg.type == WSMsgType.PING:
                    await ws.pong(msg.data)
                elif msg.type == WSMsgType.PONG:
                    await self._on_heartbeat_reply(conn)
                elif msg.type == WSMsgType.BINARY:
                    await conn.send_error("Invalid message format")
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Realtime connection error: {ws.exception()}")
                    break

                if conn.is_closed:
                    break

        except Exception as e:
            logger.error(f"Realtime handler error for {conn!r}: {e}")
            if not ws.closed:
                await ws.close(code=WSCloseCode.INTERNAL_ERROR, message=b"Internal error")

        finally:
            await self._on_disconnect(conn)

        return ws

    async def _on_disconnect(self, conn: RealtimeConnection) -> None:
        conn.state = ConnectionState.CLOSED
        self.heartbeat.on_connection_removed(conn)
        if conn.client_id:
            await self.connections.unregister(conn.client_id, conn)
            logger.info(f"Client {conn.client_id[:8]}... disconnected")

    async def handle_text(self, conn: RealtimeConnection, data: str) -> None:
        """Decode and route one text frame."""
        try:
            frame = Frame.parse(data)
        except FrameError as e:
            logger.debug(f"Invalid frame from {conn!r}")
            await conn.send_error(e.message)
            return

        await self.handle_frame(conn, frame)

    async def handle_frame(self, conn: RealtimeConnection, frame: Frame) -> None:
        """Apply the auth gate and dispatch a decoded frame."""
        if not self._dispatcher.has_handler(frame.type):
            await conn.send_error(f"Unknown message type: {frame.type}")
            return

        if self._dispatcher.is_privileged(frame.type):
            if not conn.is_authenticated:
                await conn.send_error(AUTH_REQUIRED_MESSAGE)
                return
            if not await self._clients.is_active(conn.client_id):
                await self._drop_revoked(conn)
                return

        try:
            await self._dispatcher.dispatch(conn, frame)
        except asyncio.TimeoutError:
            logger.error(f"Handler timeout for {frame.type} ({conn!r})")
            await conn.send_error(f"Request timed out: {frame.type}")

    # =========================================================================
    # Frame handlers
    # =========================================================================

    async def _handle_auth(self, conn: RealtimeConnection, frame: Frame) -> None:
        if conn.is_authenticated:
            await conn.send_error("Already authenticated")
            return

        client_id = frame.payload.get("client_id")
        certificate = frame.payload.get("certificate")

        if not isinstance(client_id, str) or not isinstance(certificate, str) \
                or not client_id or not certificate:
            await conn.send_error("Missing credentials")
            return

        try:
            valid = await self._clients.verify_certificate(client_id, certificate)
        except HasyncError as e:
            logger.error(f"Certificate check failed for {client_id[:8]}...: {e}")
            valid = False

        if not valid:
            logger.warning(f"Realtime auth failed for {client_id[:8]}... from {conn.remote}")
            await conn.send_error("Invalid credentials")
            await conn.close(WSCloseCode.POLICY_VIOLATION, "Authentication failed")
            return

        conn.authenticate(client_id)
        await self.connections.register(client_id, conn)
        await self._clients.update_activity(client_id)

        await conn.send(Frame(FrameType.AUTH_OK.value, {
            "message": "Authentication successful",
            "client_id": client_id,
        }))
        logger.info(f"Client {client_id[:8]}... authenticated via realtime channel")

    async def _handle_ping(self, conn: RealtimeConnection, frame: Frame) -> None:
        conn.mark_alive()
        await conn.send(Frame(FrameType.PONG.value, {"timestamp": now_ms()}))

    async def _handle_pong(self, conn: RealtimeConnection, frame: Frame) -> None:
        await self._on_heartbeat_reply(conn)

    async def _on_heartbeat_reply(self, conn: RealtimeConnection) -> None:
        # Protocol-level PONG or a pong frame; both refresh last_seen
        self.heartbeat.on_pong(conn)
        if conn.is_authenticated:
            await self._clients.update_activity(conn.client_id)

    async def _handle_subscribe(self, conn: RealtimeConnection, frame: Frame) -> None:
        entity_ids = frame.payload.get("entity_ids")

        if entity_ids is not None and (
            not isinstance(entity_ids, list)
            or not all(isinstance(e, str) for e in entity_ids)
        ):
            await conn.send_error("entity_ids must be a list of strings")
            return

        conn.subscribe(entity_ids)
        await conn.send(Frame(FrameType.SUBSCRIBED.value, {
            "entity_ids": entity_ids if entity_ids is not None else "all",
            "message": "Subscribed to entity updates",
        }))

    async def _handle_call_service(self, conn: RealtimeConnection, frame: Frame) -> None:
        domain = frame.payload.get("domain")
        service = frame.payload.get("service")

        if not isinstance(domain, str) or not isinstance(service, str) \
                or not domain or not service:
            await conn.send_error("Service call requires domain and service")
            return

        if not SERVICE_NAME_PATTERN.fullmatch(domain) \
                or not SERVICE_NAME_PATTERN.fullmatch(service):
            await conn.send_error("Invalid service name")
            return

        if self._service_caller is None:
            await conn.send_error("Service call failed: Home Assistant is not configured")
            return

        try:
            result = await self._service_caller.call_service(
                domain,
                service,
                frame.payload.get("service_data"),
                frame.payload.get("target"),
            )
        except Exception as e:
            logger.warning(f"Service call {domain}.{service} failed for {conn!r}: {e}")
            await conn.send_error(f"Service call failed: {e}")
            return

        await conn.send(Frame(FrameType.SERVICE_CALL_RESULT.value, {
            "success": True,
            "result": result,
        }))

    # =========================================================================
    # Fan-out and revocation
    # =========================================================================

    async def publish_state_change(self, entity_id: str, new_state: Any) -> int:
        """Broadcast an upstream state change to subscribed clients.

        Best effort: clients offline at this moment never see the update.

        Returns:
            Number of connections the update reached.
        """
        frame = Frame(
            FrameType.ENTITY_UPDATE.value,
            {"entity_id": entity_id, "state": new_state},
            timestamp=now_ms(),
        )
        return await self.connections.broadcast(frame, lambda c: c.wants(entity_id))

    async def send_to_client(self, client_id: str, frame: Frame) -> bool:
        """Send a frame to one authenticated client, if connected."""
        conn = self.connections.get(client_id)
        if conn is None or not conn.is_authenticated:
            return False
        return await conn.send(frame)

    async def on_client_revoked(self, client_id: str, reason: str) -> None:
        """Close a revoked or deleted client's live connection."""
        conn = self.connections.get(client_id)
        if conn is None:
            return
        await self.connections.unregister(client_id, conn)

        # Closing waits for the peer's close reply; the admin request does not
        conn.state = ConnectionState.CLOSED
        self.connections.schedule_close(conn, reason)
        logger.info(f"Closing realtime connection of {client_id[:8]}...: {reason}")

    async def _drop_revoked(self, conn: RealtimeConnection) -> None:
        logger.warning(f"Privileged frame from inactive client {conn.client_id[:8]}...")
        await self.connections.unregister(conn.client_id, conn)
        await conn.close_with_error(REVOKED_MESSAGE, timeout=self.connections.send_timeout)

    @property
    def connected_clients(self) -> int:
        return len(self.connections)
