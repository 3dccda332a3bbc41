"""Websocket transport between a client application and the change hub."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import aiohttp

logger = logging.getLogger(__name__)


class HubConnection(Protocol):
    """One open connection to the hub."""

    async def send_json(self, message: dict[str, Any]) -> None: ...

    def messages(self) -> AsyncIterator[Any]: ...

    async def close(self) -> None: ...


HubConnector = Callable[[], Awaitable[HubConnection]]


class AiohttpHubConnection:
    """:class:`HubConnection` backed by an aiohttp websocket."""

    def __init__(
        self, session: aiohttp.ClientSession, websocket: aiohttp.ClientWebSocketResponse
    ) -> None:
        self._session = session
        self._websocket = websocket

    async def send_json(self, message: dict[str, Any]) -> None:
        await self._websocket.send_json(message)

    async def messages(self) -> AsyncIterator[Any]:
        """Yield decoded JSON messages until the hub closes the connection."""

        async for message in self._websocket:
            if message.type == aiohttp.WSMsgType.TEXT:
                try:
                    yield json.loads(message.data)
                except ValueError:
                    logger.warning("Ignoring non-JSON hub message: %r", message.data)
            elif message.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError("Hub websocket failed") from self._websocket.exception()

    async def close(self) -> None:
        try:
            await self._websocket.close()
        finally:
            await self._session.close()


class AiohttpHubConnector:
    """Open hub connections to ``url``, passing ``token`` as query parameter."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        heartbeat: float = 30.0,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._token = token
        self._heartbeat = heartbeat
        self._timeout = timeout

    def set_token(self, token: str | None) -> None:
        """Use ``token`` for the next connection attempt."""

        self._token = token

    async def __call__(self) -> AiohttpHubConnection:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._timeout)
        )
        params = {"token": self._token} if self._token else None
        try:
            websocket = await session.ws_connect(
                self._url, params=params, heartbeat=self._heartbeat
            )
        except BaseException:
            await session.close()
            raise
        logger.info("Connected to change hub at %s", self._url)
        return AiohttpHubConnection(session, websocket)


__all__ = [
    "AiohttpHubConnection",
    "AiohttpHubConnector",
    "HubConnection",
    "HubConnector",
]
