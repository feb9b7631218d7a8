"""Forward service calls to the upstream Home Assistant instance."""

import asyncio
import logging
from typing import Any, Optional, Protocol

import aiohttp

from hasync.errors import ServiceCallError

logger = logging.getLogger(__name__)


class ServiceCaller(Protocol):
    """Protocol for anything that can execute a Home Assistant service."""

    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: Optional[dict[str, Any]] = None,
        target: Optional[dict[str, Any]] = None,
    ) -> Any:
        ...


class HomeAssistantClient:
    """Minimal Home Assistant REST client for `call_service`.

    POSTs to `{url}/api/services/{domain}/{service}` with a long-lived
    access token.
    """

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            url: Base URL of Home Assistant (e.g. http://supervisor/core).
            token: Long-lived access token.
            timeout: Request timeout in seconds.
            session: Optional shared aiohttp session (not closed by us).
        """
        self.url = url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def call_service(
        self,
        domain: str,
        service: str,
        service_data: Optional[dict[str, Any]] = None,
        target: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Call a Home Assistant service.

        Returns:
            The decoded JSON response (list of changed states).

        Raises:
            ServiceCallError: On network errors or non-2xx responses.
        """
        body: dict[str, Any] = dict(service_data or {})
        if target:
            body.update(target)

        session = await self._get_session()
        endpoint = f"{self.url}/api/services/{domain}/{service}"
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            async with session.post(endpoint, json=body, headers=headers) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise ServiceCallError(f"HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Service call {domain}.{service} failed: {e}")
            raise ServiceCallError(str(e) or type(e).__name__) from e

    async def close(self) -> None:
        """Close the owned HTTP session."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
