"""Client for the remote store that accepts finalized records.

The contract the sync core relies on is deliberately small: post a payload,
learn whether it was accepted.  ``RemoteStore`` is the abstract surface used
by the engine and gateway; ``HttpRemoteStore`` implements it as JSON over
HTTP with ``httpx``.

Endpoints used (relative to ``remote_base_url``):
    POST /api/ingestion — accept one record
    GET  /health        — reachability probe
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from notesync.config import Settings, get_settings
from notesync.sync.base import IngestionPayload
from notesync.sync.errors import DeliveryFailed

logger = logging.getLogger("notesync.sync.remote")


class RemoteStore(ABC):
    """Abstract remote store.

    Subclasses must implement:
        - deliver()
        - probe()
    """

    @abstractmethod
    async def deliver(self, payload: IngestionPayload, *, idempotency_key: str) -> None:
        """Send one record to the remote store.

        Args:
            payload:         The record to deliver.
            idempotency_key: Stable key the remote store deduplicates on.

        Raises:
            DeliveryFailed: On any network error, timeout or rejection.
        """

    @abstractmethod
    async def probe(self) -> bool:
        """Return True if the remote store is reachable right now."""

    async def aclose(self) -> None:
        """Release network resources.  Default: nothing to release."""


class HttpRemoteStore(RemoteStore):
    """JSON-over-HTTP remote store.

    A record is accepted when the endpoint answers 2xx and the body, if it is
    a JSON object, does not say ``"success": false``.
    """

    def __init__(
        self,
        base_url: str,
        ingest_path: str = "/api/ingestion",
        health_path: str = "/health",
        api_token: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:        Remote store origin, e.g. ``https://notes.example.com``.
            ingest_path:     Path records are posted to.
            health_path:     Path used by ``probe()``.
            api_token:       Optional bearer token.
            timeout_seconds: Per-request timeout.
            http_client:     Optional pre-configured httpx client (for testing).
                             An injected client is never closed by ``aclose()``.
        """
        self._base_url = base_url.rstrip("/")
        self._ingest_path = ingest_path
        self._health_path = health_path
        self._api_token = api_token
        self._timeout = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpRemoteStore":
        s = settings or get_settings()
        return cls(
            base_url=s.remote_base_url,
            ingest_path=s.remote_ingest_path,
            health_path=s.remote_health_path,
            api_token=s.remote_api_token,
            timeout_seconds=s.remote_timeout_seconds,
        )

    @property
    def ingest_url(self) -> str:
        return f"{self._base_url}{self._ingest_path}"

    @property
    def health_url(self) -> str:
        return f"{self._base_url}{self._health_path}"

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    # ------------------------------------------------------------------
    # RemoteStore interface
    # ------------------------------------------------------------------

    async def deliver(self, payload: IngestionPayload, *, idempotency_key: str) -> None:
        try:
            response = await self._client().post(
                self.ingest_url,
                json=payload.to_wire(),
                headers=self._headers(idempotency_key),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise DeliveryFailed(f"Timed out delivering to {self.ingest_url}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Network error delivering to {self.ingest_url}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise DeliveryFailed(
                f"Remote store rejected record: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        body = _json_or_none(response)
        if isinstance(body, dict) and body.get("success") is False:
            raise DeliveryFailed(
                f"Remote store reported failure: {body.get('error') or body.get('message') or 'unknown'}",
                status_code=response.status_code,
            )
        logger.debug("Delivered record (key=%s)", idempotency_key)

    async def probe(self) -> bool:
        try:
            response = await self._client().get(
                self.health_url, headers=self._headers(), timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            logger.debug("Remote probe failed: %s", exc)
            return False
        return response.status_code < 500

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _json_or_none(response: httpx.Response) -> object:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
