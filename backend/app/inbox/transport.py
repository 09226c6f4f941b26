"""Conexión persistente al stream push del inbox vía WebSocket."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from app.core.logging import get_logger
from app.core.security import mask_secret

logger = get_logger("app.inbox.transport")


class TransportError(RuntimeError):
    """Fallo al abrir o escribir en el stream."""


class InboxConnection(Protocol):
    """Contrato mínimo que `InboxSession` necesita de la conexión."""

    async def send(self, payload: dict[str, Any]) -> None: ...

    def frames(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


ConnectionFactory = Callable[[], Awaitable[InboxConnection]]


class WebSocketConnection:
    """Adaptador sobre `websockets` que serializa comandos como JSON."""

    def __init__(self, websocket: ClientConnection) -> None:
        self._ws = websocket

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        token: str | None = None,
        open_timeout: float = 10.0,
    ) -> WebSocketConnection:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            websocket = await connect(url, additional_headers=headers, open_timeout=open_timeout)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.error(
                "inbox.transport_open_failed",
                extra={"url": url, "token": mask_secret(token), "error": str(exc)},
            )
            raise TransportError(f"No fue posible conectar a {url}: {exc}") from exc
        return cls(websocket)

    async def send(self, payload: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise TransportError("El stream del inbox está cerrado") from exc

    async def frames(self) -> AsyncIterator[str | bytes]:
        """Itera frames hasta que el servidor o la red cierren la conexión."""
        try:
            async for frame in self._ws:
                yield frame
        except ConnectionClosedOK:
            return
        except ConnectionClosed as exc:
            logger.warning(
                "inbox.transport_closed_abnormally",
                extra={"code": exc.rcvd.code if exc.rcvd else None, "error": str(exc)},
            )

    async def close(self) -> None:
        await self._ws.close()


def websocket_factory(url: str, *, token: str | None = None) -> ConnectionFactory:
    """Fábrica por defecto usada por la aplicación."""

    async def _open() -> InboxConnection:
        return await WebSocketConnection.open(url, token=token)

    return _open
