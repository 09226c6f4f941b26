#!/usr/bin/env python3
"""Prueba de humo contra el stream del inbox de la plataforma.

Abre la conexión, espera la lista de conversaciones, pide el historial de la
primera y muestra un resumen. Útil para validar un despliegue nuevo.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from app.core.config import settings
from app.core.logging import configure_logging
from app.inbox.projection import format_last_activity
from app.inbox.session import InboxSession, InboxSessionError
from app.inbox.transport import websocket_factory
from app.services.gateway import GatewayClient


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Verifica el stream del inbox: conexión, lista de conversaciones e historial."
    )
    parser.add_argument(
        "--base-url",
        help="URL base de la plataforma. Si se omite se usa INBOX_UPSTREAM_BASE_URL.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="Segundos máximos de espera para cada respuesta (default: 15).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=3,
        help="Número de conversaciones a mostrar (default: 3).",
    )
    return parser.parse_args()


async def _wait_for(predicate, *, timeout: float, interval: float = 0.1) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


async def run(base_url: str, *, timeout: float, limit: int) -> int:
    settings.upstream_base_url = base_url
    session = InboxSession(
        connection_factory=websocket_factory(
            settings.upstream_ws_url, token=settings.upstream_api_token
        ),
        gateway=GatewayClient(base_url=base_url),
    )
    try:
        await session.connect()
    except InboxSessionError as exc:
        print(f"[error] No fue posible conectar: {exc}", file=sys.stderr)
        return 1

    try:
        print(f"[ok] Conectado a {settings.upstream_ws_url}")
        if not await _wait_for(lambda: bool(session.state.conversations), timeout=timeout):
            print("[warn] No se recibieron conversaciones", file=sys.stderr)
            return 2

        conversations = session.state.conversations
        print(f"[ok] {len(conversations)} conversaciones recibidas")
        for conversation in conversations[:limit]:
            window = "freeform" if conversation.can_send_freeform else "template"
            print(
                f"  - {conversation.display_name} ({conversation.phone_number}) "
                f"[{window}] {format_last_activity(conversation.last_message_at)} "
                f"{conversation.last_message_preview or 'No messages'}"
            )

        first = conversations[0]
        await session.select(first.phone_number)
        if not await _wait_for(lambda: not session.state.messages_loading, timeout=timeout):
            print("[warn] El historial no llegó a tiempo", file=sys.stderr)
            return 3
        print(f"[ok] Historial de {first.phone_number}: {len(session.state.messages)} mensajes")
        if session.state.last_error:
            print(f"[warn] La plataforma reportó: {session.state.last_error}", file=sys.stderr)
        return 0
    finally:
        await session.close()


def main() -> int:
    args = parse_args()
    configure_logging()
    base_url = args.base_url or settings.upstream_base_url
    return asyncio.run(run(base_url, timeout=args.timeout, limit=args.limit))


if __name__ == "__main__":
    sys.exit(main())
