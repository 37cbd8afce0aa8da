"""Odoo-style JSON-RPC client over httpx.

- Lazy authentication: the first call resolves the user id via
  ``common.authenticate``; subsequent calls go through ``object.execute_kw``
- Bounded timeouts on every request
- Transient transport failures (timeouts, connection errors, 429, 5xx) are
  retried with tenacity exponential backoff and surface as
  RemoteTransientError once retries are exhausted
- Server exceptions are mapped by class name: MissingError -> not found,
  validation/user/access errors -> validation (permanent)
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.erpsync.remote.client import Domain, RemoteClient
from src.erpsync.sync.errors import (
    RemoteError,
    RemoteNotFoundError,
    RemoteTransientError,
    RemoteValidationError,
)

logger = structlog.get_logger(__name__)

_NOT_FOUND_ERRORS = ("MissingError",)
_VALIDATION_ERRORS = (
    "ValidationError",
    "UserError",
    "AccessError",
    "AccessDenied",
    "ValueError",
    "IntegrityError",
)


def map_server_error(error: dict[str, Any]) -> RemoteError:
    """Translate a JSON-RPC ``error`` object into the remote error taxonomy."""
    data = error.get("data") or {}
    name = str(data.get("name") or "")
    message = str(data.get("message") or error.get("message") or "Remote error")
    short_name = name.rsplit(".", 1)[-1]
    if short_name in _NOT_FOUND_ERRORS:
        return RemoteNotFoundError(message)
    if short_name in _VALIDATION_ERRORS:
        return RemoteValidationError(message)
    if "SerializationFailure" in name or "concurrent update" in message:
        return RemoteTransientError(message)
    return RemoteError(f"{name or 'ServerError'}: {message}")


class OdooJsonRpcClient(RemoteClient):
    """RemoteClient speaking JSON-RPC to an Odoo-compatible server.

    Args:
        url: Server base URL (``/jsonrpc`` is appended).
        database: Database name.
        username: Login used for authentication.
        api_key: API key or password.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        url: str,
        database: str,
        username: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = url.rstrip("/") + "/jsonrpc"
        self._database = database
        self._username = username
        self._api_key = api_key
        self._uid: int | None = None
        self._ids = itertools.count(1)
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    # ── RemoteClient ────────────────────────────────────────────────────────

    async def create(self, model: str, values: dict[str, Any]) -> int:
        result = await self.execute(model, "create", [values])
        # Newer servers return a list when given a list of vals
        if isinstance(result, list):
            return int(result[0])
        return int(result)

    async def write(self, model: str, ids: list[int], values: dict[str, Any]) -> bool:
        return bool(await self.execute(model, "write", [ids, values]))

    async def unlink(self, model: str, ids: list[int]) -> bool:
        return bool(await self.execute(model, "unlink", [ids]))

    async def read(
        self, model: str, ids: list[int], fields: list[str] | None = None
    ) -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {}
        if fields:
            kwargs["fields"] = fields
        try:
            return list(await self.execute(model, "read", [ids], kwargs))
        except RemoteNotFoundError:
            return []

    async def search(
        self,
        model: str,
        domain: Domain,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[int]:
        kwargs: dict[str, Any] = {"offset": offset}
        if limit is not None:
            kwargs["limit"] = limit
        result = await self.execute(model, "search", [[list(t) for t in domain]], kwargs)
        return [int(i) for i in result]

    async def close(self) -> None:
        await self._http.aclose()

    # ── JSON-RPC plumbing ───────────────────────────────────────────────────

    async def execute(
        self,
        model: str,
        method: str,
        args: list[Any],
        kwargs: dict[str, Any] | None = None,
    ) -> Any:
        """Call ``model.method(*args, **kwargs)`` on the server."""
        uid = await self._authenticate()
        return await self._call(
            "object",
            "execute_kw",
            [self._database, uid, self._api_key, model, method, args, kwargs or {}],
        )

    async def _authenticate(self) -> int:
        if self._uid is not None:
            return self._uid
        uid = await self._call(
            "common", "authenticate", [self._database, self._username, self._api_key, {}]
        )
        if not uid:
            raise RemoteValidationError(
                f"Authentication failed for {self._username!r} on database {self._database!r}"
            )
        self._uid = int(uid)
        logger.info("remote.authenticated", database=self._database, uid=self._uid)
        return self._uid

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RemoteTransientError),
        reraise=True,
    )
    async def _call(self, service: str, method: str, args: list[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": args},
            "id": next(self._ids),
        }
        try:
            response = await self._http.post(self._endpoint, json=body)
        except httpx.TimeoutException as exc:
            logger.warning("remote.timeout", service=service, method=method)
            raise RemoteTransientError(f"Timeout calling {service}.{method}") from exc
        except httpx.TransportError as exc:
            logger.warning("remote.transport_error", service=service, method=method, error=str(exc))
            raise RemoteTransientError(f"Transport error calling {service}.{method}: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise RemoteTransientError(f"HTTP {response.status_code} from remote")
        if response.status_code >= 400:
            raise RemoteError(f"HTTP {response.status_code} from remote: {response.text[:200]}")

        payload = response.json()
        if payload.get("error"):
            raise map_server_error(payload["error"])
        return payload.get("result")
