"""
Hosted backend access.
Defines the Backend collaborator used by every handler and its Supabase
(PostgREST) implementation. Handlers never talk to the database directly;
they receive a Backend through get_backend() so tests can substitute the
in-memory implementation.
"""

import time
from typing import Any, Callable, Optional, Protocol

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import Settings, settings
from models.records import ChangeType
from services.change_feed import ChangeCallback, ChangeFeed
from utils.metrics import track_external_service

logger = structlog.get_logger(__name__)


class BackendError(Exception):
    """A backend read, write or procedure call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, table: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.table = table
        super().__init__(message)


class Backend(Protocol):
    """Read/write/subscribe operations against the hosted backend."""

    async def select_one(self, table: str, filters: dict[str, Any]) -> Optional[dict[str, Any]]:
        ...

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        ...

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        ...

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        ...

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        ...

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        ...


class SupabaseBackend:
    """Backend implementation over the Supabase PostgREST API."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 15.0,
        change_feed: Optional[ChangeFeed] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rest_url = f"{self.base_url}/rest/v1"
        self.service_key = service_key
        self.timeout = timeout
        self.change_feed = change_feed or ChangeFeed()
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        """Get authentication headers."""
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _filter_params(filters: Optional[dict[str, Any]]) -> dict[str, str]:
        """Translate equality filters into PostgREST query params."""
        params = {}
        for column, value in (filters or {}).items():
            if value is None:
                params[column] = "is.null"
            elif isinstance(value, bool):
                params[column] = f"is.{str(value).lower()}"
            else:
                params[column] = f"eq.{value}"
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        idempotent: bool = True,
        table: Optional[str] = None,
    ) -> Any:
        """Send a request, retrying transport errors for idempotent calls."""
        headers = self._get_headers()
        if prefer:
            headers["Prefer"] = prefer

        attempts = 3 if idempotent else 1
        start_time = time.time()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                        response = await client.request(
                            method,
                            f"{self.rest_url}/{path}",
                            params=params,
                            json=json,
                            headers=headers,
                        )
                        response.raise_for_status()

        except httpx.HTTPStatusError as e:
            track_external_service("supabase", "error", time.time() - start_time)
            logger.error(
                "backend_http_error",
                method=method,
                path=path,
                status_code=e.response.status_code,
                response=e.response.text[:500],
            )
            raise BackendError(
                f"{method} {path} failed with {e.response.status_code}",
                status_code=e.response.status_code,
                table=table,
            ) from e
        except httpx.TransportError as e:
            track_external_service("supabase", "error", time.time() - start_time)
            logger.error("backend_transport_error", method=method, path=path, error=str(e))
            raise BackendError(f"{method} {path} failed: {e}", table=table) from e

        track_external_service("supabase", "success", time.time() - start_time)

        if not response.content:
            return None
        return response.json()

    async def select_one(self, table: str, filters: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Return the first matching row, or None."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows."""
        params = {"select": "*", **self._filter_params(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)

        rows = await self._request("GET", table, params=params, table=table)
        return rows or []

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored."""
        rows = await self._request(
            "POST",
            table,
            json=record,
            prefer="return=representation",
            idempotent=False,
            table=table,
        )
        if not rows:
            raise BackendError(f"insert into {table} returned no row", table=table)

        created = rows[0] if isinstance(rows, list) else rows
        await self.change_feed.publish(table, ChangeType.INSERT, created)
        return created

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        """Update matching rows and return them."""
        if not filters:
            raise BackendError(f"refusing unfiltered update of {table}", table=table)

        rows = await self._request(
            "PATCH",
            table,
            params=self._filter_params(filters),
            json=values,
            prefer="return=representation",
            table=table,
        )
        rows = rows or []
        for row in rows:
            await self.change_feed.publish(table, ChangeType.UPDATE, row)
        return rows

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        """Call a remote procedure."""
        return await self._request("POST", f"rpc/{function}", json=params)

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        return self.change_feed.subscribe(table, callback)


def build_backend(config: Settings) -> Backend:
    """Build the backend selected by BACKEND_MODE."""
    if config.backend_mode == "memory":
        from services.memory_backend import InMemoryBackend

        logger.warning("using_in_memory_backend")
        return InMemoryBackend()

    if not config.supabase_url or not config.supabase_service_role_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")

    return SupabaseBackend(
        base_url=config.supabase_url,
        service_key=config.supabase_service_role_key,
        timeout=config.backend_timeout,
    )


_backend: Optional[Backend] = None


def get_backend() -> Backend:
    """Get the process-wide backend (FastAPI dependency)."""
    global _backend
    if _backend is None:
        _backend = build_backend(settings)
    return _backend


def set_backend(backend: Optional[Backend]) -> None:
    """Replace the process-wide backend (tests, scripts)."""
    global _backend
    _backend = backend
