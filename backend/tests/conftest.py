"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.inbox.session import InboxSession
from app.inbox.transport import TransportError
from app.main import create_app
from app.services.gateway import GatewayError


class FakeConnection:
    """Stream en memoria: las pruebas empujan frames y leen los comandos enviados."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._frames: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    async def send(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise TransportError("closed")
        self.sent.append(payload)

    async def frames(self):
        while True:
            frame = await self._frames.get()
            if frame is None:
                self._frames.task_done()
                return
            yield frame
            self._frames.task_done()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._frames.put_nowait(None)

    def push(self, frame: str | bytes | dict[str, Any]) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._frames.put_nowait(frame)

    def hang_up(self) -> None:
        """Simula un cierre del lado del servidor."""
        self._frames.put_nowait(None)

    async def drain(self) -> None:
        """Espera a que la sesión procese todos los frames encolados."""
        await self._frames.join()

    def sent_types(self) -> list[str]:
        return [command["type"] for command in self.sent]


class FakeGateway:
    """Sustituto del cliente REST; registra llamadas y permite forzar fallos."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.templates: list[dict[str, Any]] = []
        self.read: list[str] = []
        self.freeform: dict[str, bool] = {}
        self.fail_with: GatewayError | None = None
        self.release: asyncio.Event | None = None

    async def send_message(self, *, to: str, body: str) -> str | None:
        if self.release is not None:
            await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with
        self.messages.append((to, body))
        return f"wamid.{len(self.messages)}"

    async def send_template(
        self,
        *,
        number: str,
        template: str,
        customer_name: str | None = None,
        context: str | None = None,
    ) -> str | None:
        if self.fail_with is not None:
            raise self.fail_with
        self.templates.append(
            {
                "number": number,
                "template": template,
                "customer_name": customer_name,
                "context": context,
            }
        )
        return "SM-template"

    async def can_send_freeform(self, identity: str) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        return self.freeform.get(identity, False)

    async def mark_read(self, conversation_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.read.append(conversation_id)


@pytest.fixture(name="connection")
def fixture_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture(name="gateway")
def fixture_gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture(name="session")
async def fixture_session(connection: FakeConnection, gateway: FakeGateway) -> InboxSession:
    """Sesión con conexión y gateway falsos, sin conectar todavía."""

    async def factory() -> FakeConnection:
        return connection

    session = InboxSession(connection_factory=factory, gateway=gateway)  # type: ignore[arg-type]
    yield session
    await session.close()


@pytest_asyncio.fixture(name="async_client")
async def fixture_async_client(session: InboxSession) -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    app = create_app(session=session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
