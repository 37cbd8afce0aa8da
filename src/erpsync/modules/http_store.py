"""LocalStore backed by the host's REST API.

The host exposes one collection per local table:

    GET    {base}/{table}/{id}   -> record fields, 404 when missing
    POST   {base}/{table}        -> {"id": ...}
    PUT    {base}/{table}/{id}   -> {"id": ...}
    DELETE {base}/{table}/{id}   -> 2xx, 404 when missing

Writes carry ``X-Sync-Origin: <module>`` so the host can skip emitting
change events for records the sync engine itself just wrote.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.erpsync.core.context import SyncContext
from src.erpsync.modules.local import LocalStore
from src.erpsync.sync.errors import LocalStoreError, LocalStoreRejectedError

logger = structlog.get_logger(__name__)


class HttpLocalStore(LocalStore):
    """Reads and writes local entities over HTTP.

    Args:
        base_url: Root of the host's sync REST namespace.
        api_token: Bearer token sent with every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def load(self, table: str, local_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/{table}/{local_id}")
        if response.status_code == 404:
            return None
        return response.json()

    async def save(
        self,
        table: str,
        data: dict[str, Any],
        local_id: str | None,
        context: SyncContext,
    ) -> str | int | None:
        headers = {"X-Sync-Origin": context.module_id}
        if local_id:
            response = await self._request("PUT", f"/{table}/{local_id}", json=data, headers=headers)
        else:
            response = await self._request("POST", f"/{table}", json=data, headers=headers)
        if response.status_code == 404:
            logger.warning("local_store.save_target_missing", table=table, local_id=local_id)
            return None
        return response.json().get("id")

    async def delete(self, table: str, local_id: str, context: SyncContext) -> bool:
        response = await self._request(
            "DELETE", f"/{table}/{local_id}", headers={"X-Sync-Origin": context.module_id}
        )
        return response.status_code != 404

    async def close(self) -> None:
        await self._http.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(LocalStoreError),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request. 404 is returned to the caller; other errors raise."""
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("local_store.transport_error", method=method, path=path, error=str(exc))
            raise LocalStoreError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise LocalStoreError(f"HTTP {response.status_code} from local host")
        if response.status_code >= 400 and response.status_code != 404:
            raise LocalStoreRejectedError(
                f"HTTP {response.status_code} from local host: {response.text[:200]}"
            )
        return response
