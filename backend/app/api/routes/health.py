"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(request: Request) -> dict[str, str | None]:
    """Indica que la API está viva y el estado del stream del inbox."""
    session = getattr(request.app.state, "inbox_session", None)
    inbox = session.state.connection_state.value if session is not None else None
    return {"status": "ok", "inbox": inbox}
