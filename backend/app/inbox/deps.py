"""Dependencias reutilizables para las rutas del inbox."""

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.security import OperatorAuthError, verify_operator_token

from .session import InboxSession


async def require_operator(authorization: str | None = Header(default=None)) -> None:
    """Exige el token del panel cuando está configurado."""
    try:
        verify_operator_token(settings.operator_token, authorization)
    except OperatorAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def get_session(request: Request) -> InboxSession:
    """Retorna la sesión única creada en el lifespan de la aplicación."""
    session = getattr(request.app.state, "inbox_session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inbox session not initialised",
        )
    return session
