"""Endpoints del panel para operar el inbox de WhatsApp."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.models.vocabulary import InvalidTransitionError, UnknownValueError, UnreadState
from app.services.gateway import GatewayError

from . import schemas
from .deps import get_session, require_operator
from .session import (
    ConversationNotFoundError,
    InboxSendError,
    InboxSession,
    InboxSessionError,
    InvalidCommandError,
    NoConversationSelectedError,
    NotConnectedError,
    SendInProgressError,
)

router = APIRouter(prefix="/inbox", tags=["inbox"], dependencies=[Depends(require_operator)])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConversationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (SendInProgressError, InvalidTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (NoConversationSelectedError, InvalidCommandError, UnknownValueError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotConnectedError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, (InboxSendError, GatewayError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _state_response(session: InboxSession) -> schemas.InboxStateResponse:
    state = session.state
    return schemas.InboxStateResponse(
        connection_state=state.connection_state,
        selected_id=state.selected_id,
        messages_loading=state.messages_loading,
        sending=state.sending,
        last_error=state.last_error,
        conversation_count=len(state.conversations),
        unread_total=state.unread_total,
        unread_state=UnreadState.of(state.unread_total),
    )


@router.get("/state", response_model=schemas.InboxStateResponse, summary="Estado de la sesión")
async def get_state(session: InboxSession = Depends(get_session)) -> schemas.InboxStateResponse:
    return _state_response(session)


@router.post(
    "/connect",
    response_model=schemas.InboxStateResponse,
    summary="Abre (o reabre) el stream del inbox",
)
async def connect(session: InboxSession = Depends(get_session)) -> schemas.InboxStateResponse:
    """No hay reconexión automática; el panel usa este endpoint tras una desconexión."""
    try:
        await session.connect()
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return _state_response(session)


@router.post("/refresh", status_code=202, summary="Solicita la lista completa de conversaciones")
async def refresh(session: InboxSession = Depends(get_session)) -> dict[str, bool]:
    try:
        await session.refresh()
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@router.get(
    "/conversations",
    response_model=schemas.ConversationListResponse,
    summary="Lista de conversaciones visible (con búsqueda opcional)",
)
async def list_conversations(
    q: str | None = Query(default=None, max_length=120, description="Nombre o número."),
    session: InboxSession = Depends(get_session),
) -> schemas.ConversationListResponse:
    items = session.visible_conversations(q)
    return schemas.ConversationListResponse(items=items, total=len(session.state.conversations))


@router.post(
    "/conversations/{conversation_id}/select",
    response_model=schemas.InboxStateResponse,
    summary="Selecciona una conversación y marca sus mensajes como leídos",
)
async def select_conversation(
    conversation_id: str,
    session: InboxSession = Depends(get_session),
) -> schemas.InboxStateResponse:
    try:
        await session.select(conversation_id)
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return _state_response(session)


@router.get(
    "/messages",
    response_model=schemas.MessageListResponse,
    summary="Historial de la conversación seleccionada",
)
async def list_messages(
    session: InboxSession = Depends(get_session),
) -> schemas.MessageListResponse:
    state = session.state
    return schemas.MessageListResponse(
        conversation_id=state.selected_id,
        loading=state.messages_loading,
        items=list(state.messages),
    )


@router.post(
    "/messages",
    response_model=schemas.SendResponse,
    summary="Envía texto libre a la conversación seleccionada",
)
async def send_message(
    payload: schemas.SendMessageRequest,
    session: InboxSession = Depends(get_session),
) -> schemas.SendResponse:
    try:
        message_id = await session.send_message(payload.body)
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return schemas.SendResponse(message_id=message_id)


@router.post(
    "/templates",
    response_model=schemas.SendResponse,
    summary="Envía una plantilla aprobada",
)
async def send_template(
    payload: schemas.SendTemplateRequest,
    session: InboxSession = Depends(get_session),
) -> schemas.SendResponse:
    try:
        sid = await session.send_template(
            payload.template,
            number=payload.number,
            customer_name=payload.customer_name,
            context=payload.context,
        )
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return schemas.SendResponse(message_id=sid)


@router.get(
    "/conversations/{conversation_id}/freeform",
    response_model=schemas.FreeformResponse,
    summary="Consulta si la ventana de la plataforma permite texto libre",
)
async def get_freeform(
    conversation_id: str,
    session: InboxSession = Depends(get_session),
) -> schemas.FreeformResponse:
    try:
        allowed = await session.can_send_freeform(conversation_id)
    except GatewayError as exc:
        raise _http_error(exc) from exc
    return schemas.FreeformResponse(conversation_id=conversation_id, can_send_freeform=allowed)


@router.patch(
    "/conversations/{conversation_id}/classification",
    status_code=202,
    summary="Solicita cambiar rol, etapa, nombre o asignación",
)
async def classify_conversation(
    conversation_id: str,
    payload: schemas.ClassificationRequest,
    session: InboxSession = Depends(get_session),
) -> dict[str, bool]:
    try:
        await session.classify(
            conversation_id,
            role=payload.role,
            funnel_stage=payload.funnel_stage,
            name=payload.name,
            assigned_handyman_id=payload.assigned_handyman_id,
        )
    except InboxSessionError as exc:
        raise _http_error(exc) from exc
    return {"ok": True}


@router.post(
    "/conversations/{conversation_id}/advance",
    status_code=202,
    summary="Avanza al lead a la siguiente etapa del embudo",
)
async def advance_conversation(
    conversation_id: str,
    session: InboxSession = Depends(get_session),
) -> dict[str, str]:
    try:
        target = await session.advance_funnel(conversation_id)
    except (InboxSessionError, InvalidTransitionError) as exc:
        raise _http_error(exc) from exc
    return {"funnelStage": target.value}


@router.get(
    "/intake",
    response_model=schemas.IntakeBoardResponse,
    summary="Tablero de intake: leads por etapa y handymen",
)
async def get_intake_board(
    session: InboxSession = Depends(get_session),
) -> schemas.IntakeBoardResponse:
    leads, handymen = session.intake_board()
    return schemas.IntakeBoardResponse(leads=leads, handymen=handymen)


@router.delete("/error", status_code=204, summary="Descarta el último error mostrado")
async def dismiss_error(session: InboxSession = Depends(get_session)) -> Response:
    session.dismiss_error()
    return Response(status_code=204)
