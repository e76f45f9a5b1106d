from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx

from elementhooks.config.schema import RemoteConfig
from elementhooks.core.exceptions import TransportError
from elementhooks.logging.logger import get_logger
from elementhooks.remote.parser import error_from_response, parse_content_range, render_filter

logger = get_logger(__name__)

Filter = tuple[str, str, Any]


@dataclass(slots=True)
class SelectResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None


class RemoteDataClient(ABC):
    """Table/RPC access to the remote data platform."""

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        filters: Iterable[Filter] = (),
        columns: str = "*",
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        raise NotImplementedError

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, table: str, filters: Iterable[Filter], values: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, table: str, filters: Iterable[Filter]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def current_user_id(self) -> str | None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class PostgrestClient(RemoteDataClient):
    """PostgREST-style REST client over a shared httpx.AsyncClient."""

    def __init__(self, config: RemoteConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._http = httpx.AsyncClient(
            base_url=config.url,
            timeout=config.request_timeout_seconds,
            transport=transport,
            headers={
                "apikey": config.api_key,
                "Authorization": f"Bearer {config.api_key}",
                "Accept-Profile": config.schema_name,
                "Content-Profile": config.schema_name,
            },
        )

    async def select(
        self,
        table: str,
        *,
        filters: Iterable[Filter] = (),
        columns: str = "*",
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        params: list[tuple[str, str]] = [("select", columns)]
        params.extend(_query_params(filters))
        if order is not None:
            column, ascending = order
            params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset is not None:
            params.append(("offset", str(offset)))
        headers = {"Prefer": "count=exact"} if count else {}

        response = await self._request("GET", f"/rest/v1/{table}", params=params, headers=headers)
        return SelectResult(
            rows=response.json() or [],
            count=parse_content_range(response.headers.get("content-range")) if count else None,
        )

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json() or []
        return rows[0] if isinstance(rows, list) else rows

    async def update(self, table: str, filters: Iterable[Filter], values: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=_query_params(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json() or []

    async def delete(self, table: str, filters: Iterable[Filter]) -> list[dict[str, Any]]:
        response = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=_query_params(filters),
            headers={"Prefer": "return=representation"},
        )
        return response.json() or []

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        response = await self._request("POST", f"/rest/v1/rpc/{function}", json=params)
        if not response.content:
            return None
        return response.json()

    async def current_user_id(self) -> str | None:
        response = await self._request("GET", "/auth/v1/user")
        payload = response.json() or {}
        return payload.get("id")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {path} could not be completed: {exc}") from exc

        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            error = error_from_response(response.status_code, payload)
            logger.warning("%s %s failed with %s: %s", method, path, response.status_code, error)
            raise error
        return response


def create_remote_client(config: RemoteConfig) -> RemoteDataClient:
    return PostgrestClient(config)


def _query_params(filters: Iterable[Filter]) -> list[tuple[str, str]]:
    params = []
    for column, operator, value in filters:
        params.append((column, render_filter(operator, value)))
    return params
