"""Client boundary to the remote store."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx

from flipsync.errors import RemoteError
from flipsync.models.cache_models import CollectionKind, ConflictStrategy
from flipsync.services.mappers import document_id as wire_document_id

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)


@dataclass
class RemoteResult:
    """Outcome of a single remote call."""
    success: bool
    data: Any = None
    error: Optional[str] = None


@dataclass
class BulkWriteResult:
    """Per-entity outcome summary of a bulk write."""
    success: bool
    written: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # document id -> error
    error: Optional[str] = None


class RemoteClient(ABC):
    """Read/write operations of the remote store, per collection.

    Implementations either return a result with ``success=False`` or raise
    RemoteError; callers treat both as transient failures.
    """

    @abstractmethod
    async def fetch(self, kind: CollectionKind, owner: str) -> RemoteResult:
        """Return every document of ``owner`` in the collection."""

    @abstractmethod
    async def save(self, kind: CollectionKind, owner: str, document: Dict[str, Any]) -> RemoteResult:
        """Create or update one document."""

    @abstractmethod
    async def delete(self, kind: CollectionKind, owner: str, document_id: str) -> RemoteResult:
        """Delete one document."""

    @abstractmethod
    async def bulk_write(
        self,
        kind: CollectionKind,
        owner: str,
        documents: List[Dict[str, Any]],
        strategy: ConflictStrategy,
    ) -> BulkWriteResult:
        """Write many documents with the given conflict strategy."""

    async def check_health(self) -> bool:
        """Whether the remote store is reachable."""
        return True

    async def aclose(self) -> None:
        """Release transport resources."""


# HTTP status codes the remote store uses for transient conditions
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class HttpRemoteClient(RemoteClient):
    """RemoteClient speaking JSON to the remote store's REST API.

    Routes are ``/api/{collection}/{owner}[/{id}|/bulk]``; every response
    body is ``{"success": bool, "data": ..., "error": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    @staticmethod
    def _path(kind: CollectionKind, owner: str, suffix: str = "") -> str:
        path = f"/api/{kind.value}/{owner}"
        return f"{path}/{suffix}" if suffix else path

    async def _request(self, method: str, path: str, payload: Any = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise RemoteError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            retryable = response.status_code in RETRYABLE_STATUS_CODES
            logger.warning(
                "Remote %s %s returned %d%s",
                method,
                path,
                response.status_code,
                " (retryable)" if retryable else "",
            )
            raise RemoteError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(body, dict):
            raise RemoteError(f"{method} {path} returned an unexpected body")
        return body

    @staticmethod
    def _result(body: Dict[str, Any]) -> RemoteResult:
        return RemoteResult(
            success=bool(body.get("success")),
            data=body.get("data"),
            error=body.get("error"),
        )

    async def fetch(self, kind: CollectionKind, owner: str) -> RemoteResult:
        return self._result(await self._request("GET", self._path(kind, owner)))

    async def save(self, kind: CollectionKind, owner: str, document: Dict[str, Any]) -> RemoteResult:
        path = self._path(kind, owner, wire_document_id(kind, document))
        return self._result(await self._request("PUT", path, document))

    async def delete(self, kind: CollectionKind, owner: str, document_id: str) -> RemoteResult:
        return self._result(await self._request("DELETE", self._path(kind, owner, document_id)))

    async def bulk_write(
        self,
        kind: CollectionKind,
        owner: str,
        documents: List[Dict[str, Any]],
        strategy: ConflictStrategy,
    ) -> BulkWriteResult:
        body = await self._request(
            "POST",
            self._path(kind, owner, "bulk"),
            {"documents": documents, "resolveConflicts": strategy.value},
        )
        data = body.get("data") or {}
        failed = {
            str(item.get("id")): str(item.get("error") or "unknown error")
            for item in data.get("failed") or []
        }
        return BulkWriteResult(
            success=bool(body.get("success")) and not failed,
            written=[str(doc_id) for doc_id in data.get("written") or []],
            failed=failed,
            error=body.get("error"),
        )

    async def check_health(self) -> bool:
        try:
            response = await self._client.get("/api/health")
        except httpx.HTTPError:
            return False
        return response.status_code < 500
