"""Transports that carry a sync request to a log authority."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..authority.log_authority import LogAuthority, handle_sync_request
from ..errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Status and decoded JSON body of one sync round trip."""

    status_code: int
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(ABC):
    """Sends one sync request and returns the authority's answer.

    Implementations raise TransportError when the request may not have
    reached the authority (connection refused, timeout). Any response that
    did arrive, whatever its status, is returned rather than raised.
    """

    @abstractmethod
    async def send(self, request: dict[str, Any]) -> TransportResponse:
        pass


class HttpTransport(Transport):
    """POSTs sync requests to a remote authority with httpx."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        path: str = "/sync",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Base URL of the authority (e.g., "http://localhost:3000").
            timeout: Request timeout in seconds.
            path: Sync endpoint path.
            transport: Optional httpx transport (e.g. ASGITransport in tests).
        """
        self.base_url = base_url
        self.timeout = timeout
        self.path = path
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.path}"

    async def send(self, request: dict[str, Any]) -> TransportResponse:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=request)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Connection failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Non-JSON response from {self.url} ({response.status_code})")
            data = {}

        return TransportResponse(
            status_code=response.status_code,
            data=data if isinstance(data, dict) else {},
        )


class LocalTransport(Transport):
    """Delivers requests to an in-process LogAuthority."""

    def __init__(self, authority: LogAuthority):
        self.authority = authority

    async def send(self, request: dict[str, Any]) -> TransportResponse:
        # Same JSON round trip a remote authority would see
        body = json.loads(json.dumps(request))
        status, data = handle_sync_request(self.authority, body)
        return TransportResponse(status_code=status, data=json.loads(json.dumps(data)))
