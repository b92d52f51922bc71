"""Clients for the remote record store.

Handles network communication with retry logic; the reconciler only sees
the narrow ``RemoteClient`` interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import RemoteError, RemoteErrorKind

logger = logging.getLogger(__name__)


@dataclass
class PushResponse:
    """Acknowledgement of a pushed record."""

    internal_id: str


class RemoteClient(ABC):
    """Abstract remote store."""

    @abstractmethod
    async def push(self, record_type: str, payload: dict[str, Any]) -> PushResponse:
        """Send one serialized record.

        Re-pushing a payload with the same unique_identifier must update the
        existing remote record rather than create a second one.

        Raises:
            RemoteError: On network, conflict or validation failures.
        """
        pass

    @abstractmethod
    async def pull_all(self, record_type: str) -> list[dict[str, Any]]:
        """Fetch every remote record of a type as wire dictionaries.

        Raises:
            RemoteError: On failure.
        """
        pass

    @abstractmethod
    async def delete_all(self, record_type: str) -> bool:
        """Delete every remote record of a type.

        Raises:
            RemoteError: On failure.
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


class HttpRemoteClient(RemoteClient):
    """Remote store client speaking JSON over HTTP.

    Endpoints:
    - ``POST /api/{type}``: create a record
    - ``PUT /api/{type}/{internal_id}``: update a known record
    - ``GET /api/{type}``: list records
    - ``DELETE /api/{type}/destroy_all``: delete all records

    Connection errors, timeouts and 5xx responses are retried with
    exponential backoff.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Base URL of the remote store (e.g., "http://server:3000").
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts per request.
            backoff_seconds: Initial delay between attempts, doubled each time.
            transport: Optional httpx transport, mainly for tests.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> Any:
        """Make HTTP request with exponential backoff retry.

        Args:
            method: HTTP method.
            path: URL path relative to base_url.
            json_data: Optional JSON body.

        Returns:
            Decoded JSON body, or None for empty responses.

        Raises:
            RemoteError: When the request fails for good.
        """
        client = await self._get_client()
        backoff = self.backoff_seconds
        last_error = "no attempt made"

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, json=json_data)

                if response.status_code < 300:
                    if not response.content:
                        return None
                    try:
                        return response.json()
                    except ValueError as e:
                        raise RemoteError(
                            RemoteErrorKind.VALIDATION,
                            f"Invalid JSON from {method} {path}: {e}",
                            response.status_code,
                        ) from e

                if response.status_code == 409:
                    raise RemoteError(
                        RemoteErrorKind.CONFLICT,
                        f"HTTP 409: {response.text}",
                        response.status_code,
                    )

                if response.status_code < 500:
                    # Client error, don't retry
                    raise RemoteError(
                        RemoteErrorKind.VALIDATION,
                        f"HTTP {response.status_code}: {response.text}",
                        response.status_code,
                    )

                last_error = f"Server error {response.status_code}"
                logger.warning(
                    f"{last_error}, attempt {attempt + 1}/{self.max_retries}"
                )

            except httpx.ConnectError as e:
                last_error = f"Connection failed: {e}"
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException as e:
                last_error = f"Request timeout: {e}"
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                raise RemoteError(
                    RemoteErrorKind.NETWORK, f"Request error: {e}"
                ) from e

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise RemoteError(
            RemoteErrorKind.NETWORK,
            f"Max retries ({self.max_retries}) exceeded: {last_error}",
        )

    async def push(self, record_type: str, payload: dict[str, Any]) -> PushResponse:
        internal_id = payload.get("internal_id")
        if internal_id:
            data = await self._request_with_retry(
                "PUT", f"/api/{record_type}/{internal_id}", {"record": payload}
            )
        else:
            data = await self._request_with_retry(
                "POST", f"/api/{record_type}", {"record": payload}
            )

        if not isinstance(data, dict):
            raise RemoteError(
                RemoteErrorKind.VALIDATION, "Push response must be a JSON object"
            )

        assigned = data.get("internal_id") or data.get("_id")
        if not assigned:
            raise RemoteError(
                RemoteErrorKind.VALIDATION, "Push response carries no internal_id"
            )

        return PushResponse(internal_id=str(assigned))

    async def pull_all(self, record_type: str) -> list[dict[str, Any]]:
        data = await self._request_with_retry("GET", f"/api/{record_type}")

        if isinstance(data, dict):
            data = data.get("records", [])
        if not isinstance(data, list):
            raise RemoteError(
                RemoteErrorKind.VALIDATION,
                f"Expected a list of {record_type}, got {type(data).__name__}",
            )
        return data

    async def delete_all(self, record_type: str) -> bool:
        await self._request_with_retry("DELETE", f"/api/{record_type}/destroy_all")
        logger.info(f"Deleted all remote {record_type}")
        return True
