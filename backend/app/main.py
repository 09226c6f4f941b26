"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes.health import router as health_router
from app.core.config import settings
from app.core.logging import configure_logging, get_logger, resolve_log_level
from app.core.middleware import RequestLoggingMiddleware
from app.inbox.router import router as inbox_router
from app.inbox.session import InboxSession, NotConnectedError
from app.inbox.transport import websocket_factory
from app.services.gateway import GatewayClient

log = get_logger("app")


def build_session() -> InboxSession:
    """Crea la sesión única del inbox con las dependencias configuradas."""
    return InboxSession(
        connection_factory=websocket_factory(
            settings.upstream_ws_url, token=settings.upstream_api_token
        ),
        gateway=GatewayClient(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Abre el stream del inbox al iniciar y lo cierra al apagar."""
    session: InboxSession = app.state.inbox_session
    if settings.auto_connect:
        try:
            await session.connect()
        except NotConnectedError as exc:
            # El panel puede reintentar con POST /inbox/connect
            log.warning("inbox.autoconnect_failed", extra={"error": str(exc)})
    try:
        yield
    finally:
        await session.close()


def create_app(session: InboxSession | None = None) -> FastAPI:
    """Crea y configura la instancia de FastAPI."""
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    per_logger_files = None
    if settings.log_file_path:
        log_dir = Path(settings.log_file_path).parent
        per_logger_files = {
            "app.request": str(log_dir / "request.log"),
            "app.inbox": str(log_dir / "inbox.log"),
        }

    configure_logging(
        level=log_level,
        log_file=settings.log_file_path,
        per_logger_files=per_logger_files,
    )

    app = FastAPI(title="Handy Inbox API", version="0.1.0", root_path="/api", lifespan=lifespan)
    app.state.inbox_session = session or build_session()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Se ajustará por ambiente
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(inbox_router)

    @app.get("/info", tags=["info"])
    def info() -> dict[str, str | None]:  # pragma: no cover - ruta simple de apoyo
        return {
            "environment": settings.environment,
            "upstream": settings.upstream_base_url,
        }

    log.info("app.created", extra={"environment": settings.environment})
    return app


app = create_app()
