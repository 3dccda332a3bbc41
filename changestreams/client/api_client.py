"""Thin REST client used to fetch the current state of a changed row."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from changestreams.config import ClientSettings
from changestreams.domain.entities import EntityName

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENTITY_RESOURCES: dict[EntityName, str] = {
    EntityName.USERS: "users",
    EntityName.COMPANIES: "companies",
    EntityName.PROJECTS: "projects",
    EntityName.SCREENS: "screens",
    EntityName.SCREEN_ACTIONS: "screen-actions",
    EntityName.NOTES: "notes",
    EntityName.EMPLOYEES: "employees",
}

_INVISIBLE_STATUSES = {401, 403, 404}


class EntityApiClient:
    """Fetch single entities by id.

    Every failure, including rows the caller may not see, is reported as
    ``None`` so a change event for an invisible row is a no-op.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "EntityApiClient":
        return cls(
            settings.api_base_url,
            token=settings.access_token,
            timeout=settings.request_timeout,
        )

    def set_token(self, token: str | None) -> None:
        self._token = token

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "EntityApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def get_by_id(self, entity: EntityName | str, entity_id: Any) -> dict[str, Any] | None:
        entity = EntityName(entity)
        path = f"/api/{ENTITY_RESOURCES[entity]}/{entity_id}"
        client = await self._get_client()
        try:
            response = await client.get(path, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("GET %s failed: %s", path, exc)
            return None

        if response.status_code in _INVISIBLE_STATUSES:
            logger.debug("GET %s returned %s", path, response.status_code)
            return None
        if response.is_error:
            logger.warning("GET %s returned %s", path, response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning("GET %s returned a non-JSON body", path)
            return None
        if not isinstance(data, dict):
            logger.warning("GET %s returned %s instead of an object", path, type(data).__name__)
            return None
        return data

    def fetcher(
        self,
        entity: EntityName | str,
        factory: Callable[[dict[str, Any]], T] | None = None,
    ) -> Callable[[Any], Awaitable[Any]]:
        """Return a ``fetch_by_id`` coroutine function for ``entity``."""

        entity = EntityName(entity)

        async def fetch_by_id(entity_id: Any) -> Any:
            data = await self.get_by_id(entity, entity_id)
            if data is None or factory is None:
                return data
            try:
                return factory(data)
            except (TypeError, ValueError, KeyError) as exc:
                logger.warning("Could not build %s from response: %s", entity, exc)
                return None

        return fetch_by_id


__all__ = ["ENTITY_RESOURCES", "EntityApiClient"]
