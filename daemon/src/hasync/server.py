"""HTTP server for the daemon.

Single aiohttp server handling all routes:
- /health - Health check
- /api/pairing/pin - Issue a pairing PIN (no auth)
- /api/pairing/complete - Complete pairing with a PIN (no auth)
- /api/clients[/{id}[/revoke]] - Client administration (admin auth)
- /api/activity - Audit trail (admin auth)
- /ws - Realtime channel
"""

import hmac
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from hasync.audit import AuditLogger
from hasync.errors import AuthenticationError, HasyncError, ValidationError
from hasync.models import now_ms
from hasync.pairing.handler import PairingHandler
from hasync.pairing.registry import ClientRegistry
from hasync.pairing.session_manager import PairingSessionManager
from hasync.realtime.channel import RealtimeChannel

logger = logging.getLogger(__name__)

LOOPBACK_ADDRESSES = frozenset({"127.0.0.1", "::1"})
MAX_ACTIVITY_LIMIT = 1000


def success_response(data: Any, status: int = 200) -> web.Response:
    """Wrap data in the standard success envelope."""
    return web.json_response(
        {"success": True, "data": data, "timestamp": now_ms()},
        status=status,
    )


def error_response(error: HasyncError) -> web.Response:
    """Render an error as the standard error envelope."""
    return web.json_response(
        {"success": False, **error.to_dict(), "timestamp": now_ms()},
        status=error.status,
    )


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Turn raised HasyncErrors into structured JSON errors."""
    try:
        return await handler(request)
    except HasyncError as e:
        if e.status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        return error_response(e)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return web.json_response(
            {
                "success": False,
                "error": "InternalError",
                "message": "Internal server error",
                "timestamp": now_ms(),
            },
            status=500,
        )


class ApiServer:
    """REST boundary and WebSocket endpoint of the daemon."""

    def __init__(
        self,
        sessions: PairingSessionManager,
        pairing: PairingHandler,
        clients: ClientRegistry,
        audit: AuditLogger,
        channel: RealtimeChannel,
        admin_token: Optional[str] = None,
    ):
        """Initialize API server.

        Args:
            sessions: PIN issuance.
            pairing: Pairing completion.
            clients: Client administration.
            audit: Audit trail reader.
            channel: Realtime channel serving /ws.
            admin_token: Bearer token for admin routes. When None only
                loopback callers may use them.
        """
        self._sessions = sessions
        self._pairing = pairing
        self._clients = clients
        self._audit = audit
        self._channel = channel
        self._admin_token = admin_token

        self.app = web.Application(middlewares=[error_middleware])
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up all HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)

        # Pairing (for devices, no auth)
        self.app.router.add_get("/api/pairing/pin", self._handle_generate_pin)
        self.app.router.add_post("/api/pairing/complete", self._handle_complete_pairing)

        # Client administration
        self.app.router.add_get("/api/clients", self._handle_list_clients)
        self.app.router.add_get("/api/clients/{client_id}", self._handle_get_client)
        self.app.router.add_delete("/api/clients/{client_id}", self._handle_delete_client)
        self.app.router.add_post("/api/clients/{client_id}/revoke", self._handle_revoke_client)
        self.app.router.add_get("/api/activity", self._handle_activity)

        # Realtime channel
        self.app.router.add_get("/ws", self._channel.handle_websocket)

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start serving.

        Returns:
            The running AppRunner.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        # Resolve the actual port when 0 was requested
        server = self._site._server
        if server is not None and server.sockets:
            self._port = server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"API server listening on {host}:{self._port}")
        return self._runner

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._site = None

    @property
    def port(self) -> int:
        return self._port

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_admin(self, request: web.Request) -> None:
        """Check admin credentials.

        Raises:
            AuthenticationError: If the caller is not an administrator.
        """
        if self._admin_token is None:
            if request.remote in LOOPBACK_ADDRESSES:
                return
            raise AuthenticationError("Authentication required")

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            token.strip().encode("utf-8"), self._admin_token.encode("utf-8")
        ):
            raise AuthenticationError("Authentication required")

    @staticmethod
    async def _read_json(request: web.Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Request body must be valid JSON") from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK")

    async def _handle_generate_pin(self, request: web.Request) -> web.Response:
        """Issue a new pairing PIN."""
        session = await self._sessions.generate_pin()
        return success_response({
            "pin": session.pin,
            "expires_at": session.expires_at,
            "expires_in": session.expires_in,
        })

    async def _handle_complete_pairing(self, request: web.Request) -> web.Response:
        """Complete pairing; the only response that carries a certificate."""
        body = await self._read_json(request)

        client = await self._pairing.complete_pairing(
            pin=body.get("pin"),
            device_name=body.get("device_name"),
            device_type=body.get("device_type"),
            public_key=body.get("public_key"),
            ip=request.remote,
        )

        return success_response(
            {
                "client_id": client.id,
                "certificate": client.certificate,
                "paired_at": client.paired_at,
            },
            status=201,
        )

    async def _handle_list_clients(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        active_only = request.query.get("active", "true").lower() != "false"
        clients = await self._clients.list_clients(active_only=active_only)
        return success_response([c.to_dict() for c in clients])

    async def _handle_get_client(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        client = await self._clients.get_client(request.match_info["client_id"])
        return success_response(client.to_dict())

    async def _handle_delete_client(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        await self._clients.delete_client(request.match_info["client_id"], ip=request.remote)
        return success_response({"deleted": True})

    async def _handle_revoke_client(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        await self._clients.revoke(request.match_info["client_id"], ip=request.remote)
        return success_response({"revoked": True})

    async def _handle_activity(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        try:
            limit = int(request.query.get("limit", "100"))
        except ValueError as e:
            raise ValidationError("limit must be an integer") from e
        if not 1 <= limit <= MAX_ACTIVITY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_ACTIVITY_LIMIT}")

        entries = await self._audit.recent(
            limit=limit, client_id=request.query.get("client_id")
        )
        return success_response([e.to_dict() for e in entries])
