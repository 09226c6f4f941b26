"""Esquemas del protocolo del inbox (stream push) y del API del panel."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from app.models.conversation import ChatMetadata, Conversation, Message
from app.models.vocabulary import ChatRole, ConnectionState, FunnelStage, UnreadState

TemplateName = Literal["request_video", "review_quote"]


class InvalidEventError(ValueError):
    """Frame del stream que no se pudo interpretar como evento conocido."""


class _Frame(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Eventos servidor → cliente
# ---------------------------------------------------------------------------


class InboxReady(_Frame):
    """La conexión quedó lista para recibir comandos."""

    type: Literal["inbox:ready"]


class ConversationsSnapshot(_Frame):
    """Lista completa de conversaciones; reemplaza la vigente."""

    type: Literal["inbox:conversations"]
    data: list[Conversation] = Field(default_factory=list)


class MessageHistory(_Frame):
    """Historial completo de una conversación solicitada."""

    type: Literal["inbox:messages"]
    conversation_id: str
    data: list[Message] = Field(default_factory=list)
    error: str | None = None


class NewMessagePayload(_Frame):
    conversation_id: str
    message: Message


class NewMessage(_Frame):
    """Mensaje nuevo (entrante o eco de uno saliente)."""

    type: Literal["inbox:message"]
    data: NewMessagePayload


class ConversationUpdatePayload(_Frame):
    conversation_id: str
    updates: dict[str, Any] = Field(default_factory=dict)


class ConversationUpdated(_Frame):
    """Actualización parcial de metadatos de una conversación."""

    type: Literal["inbox:conversation_update"]
    data: ConversationUpdatePayload


class MetadataSnapshot(_Frame):
    """Mapa completo de clasificaciones de intake por chatId; reemplaza el vigente."""

    type: Literal["whatsapp:metadata"]
    data: dict[str, ChatMetadata] = Field(default_factory=dict)


class InboxErrorEvent(_Frame):
    """Error reportado por la plataforma (ej. fallo al consultar historial)."""

    type: Literal["inbox:error"]
    error: str = "Unknown inbox error"


ServerEvent = Annotated[
    Union[
        InboxReady,
        ConversationsSnapshot,
        MessageHistory,
        NewMessage,
        ConversationUpdated,
        MetadataSnapshot,
        InboxErrorEvent,
    ],
    Field(discriminator="type"),
]

_SERVER_EVENT_ADAPTER: TypeAdapter[ServerEvent] = TypeAdapter(ServerEvent)


def parse_event(raw: str | bytes) -> ServerEvent:
    """Convierte un frame JSON en el evento tipado correspondiente."""
    try:
        return _SERVER_EVENT_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        raise InvalidEventError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Comandos cliente → servidor
# ---------------------------------------------------------------------------


class OutboundCommand(_Frame):
    """Comando enviado por el stream: `{"type": ..., "data": {...}}`."""

    type: Literal[
        "inbox:get_conversations",
        "inbox:get_messages",
        "inbox:mark_read",
        "whatsapp:set_metadata",
    ]
    data: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def get_conversations_command() -> OutboundCommand:
    return OutboundCommand(type="inbox:get_conversations")


def get_messages_command(conversation_id: str) -> OutboundCommand:
    return OutboundCommand(type="inbox:get_messages", data={"conversationId": conversation_id})


def mark_read_command(conversation_id: str) -> OutboundCommand:
    return OutboundCommand(type="inbox:mark_read", data={"conversationId": conversation_id})


def set_metadata_command(chat_id: str, updates: dict[str, Any]) -> OutboundCommand:
    """Clasificación de intake; la plataforma responde difundiendo `whatsapp:metadata`."""
    return OutboundCommand(
        type="whatsapp:set_metadata",
        data={"chatId": chat_id, "updates": updates},
    )


# ---------------------------------------------------------------------------
# API del panel
# ---------------------------------------------------------------------------


class SendMessageRequest(_Frame):
    """Payload para POST /inbox/messages."""

    body: str = Field(
        ..., min_length=1, description="Texto a enviar a la conversación seleccionada."
    )


class SendTemplateRequest(_Frame):
    """Payload para POST /inbox/templates."""

    template: TemplateName = Field(..., description="Plantilla aprobada a enviar.")
    number: str | None = Field(
        default=None,
        description="Handle destino; por defecto la conversación seleccionada.",
    )
    customer_name: str | None = None
    context: str | None = Field(default=None, description="Descripción breve del trabajo.")


class ClassificationRequest(_Frame):
    """Payload para PATCH /inbox/conversations/{id}/classification."""

    role: ChatRole | None = None
    funnel_stage: FunnelStage | None = None
    name: str | None = Field(default=None, min_length=1, max_length=120)
    assigned_handyman_id: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> ChatRole | None:
        return None if value is None else ChatRole.parse(value)

    @field_validator("funnel_stage", mode="before")
    @classmethod
    def _parse_funnel_stage(cls, value: Any) -> FunnelStage | None:
        return None if value is None else FunnelStage.parse(value)


class InboxStateResponse(_Frame):
    connection_state: ConnectionState
    selected_id: str | None = None
    messages_loading: bool = False
    sending: bool = False
    last_error: str | None = None
    conversation_count: int = 0
    unread_total: int = 0
    unread_state: UnreadState = UnreadState.ZERO


class ConversationListResponse(_Frame):
    items: list[Conversation]
    total: int


class MessageListResponse(_Frame):
    conversation_id: str | None = None
    loading: bool = False
    items: list[Message] = Field(default_factory=list)


class SendResponse(_Frame):
    ok: bool = True
    message_id: str | None = None


class FreeformResponse(_Frame):
    conversation_id: str
    can_send_freeform: bool


class IntakeBoardResponse(_Frame):
    leads: dict[FunnelStage, list[Conversation]]
    handymen: list[Conversation]
