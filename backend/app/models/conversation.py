"""Modelos base para conversaciones y mensajes del inbox de WhatsApp."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.vocabulary import (
    ChatRole,
    ConversationStage,
    FunnelStage,
    MessageDirection,
    MessageStatus,
    MessageType,
)

MEDIA_PREVIEW = "Media"


def _as_utc(value: datetime | None) -> datetime | None:
    """Los timestamps sin zona se interpretan como UTC para poder compararlos."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _WireModel(BaseModel):
    """Modelos inmutables con nombres camelCase en el wire y snake_case en Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class Message(_WireModel):
    """Mensaje individual dentro de una conversación."""

    id: str = Field(..., min_length=1)
    direction: MessageDirection
    content: str = ""
    type: MessageType = MessageType.TEXT
    status: MessageStatus = MessageStatus.SENT
    media_url: str | None = None
    media_type: str | None = None
    sender_name: str | None = None
    created_at: datetime

    @field_validator("content", mode="before")
    @classmethod
    def _content_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("direction", mode="before")
    @classmethod
    def _parse_direction(cls, value: Any) -> MessageDirection:
        return MessageDirection.parse(value)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> MessageType:
        return MessageType.coerce(value)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> MessageStatus:
        return MessageStatus.SENT if value is None else MessageStatus.parse(value)

    @property
    def is_inbound(self) -> bool:
        return self.direction is MessageDirection.INBOUND

    @property
    def preview(self) -> str:
        """Texto corto para la lista; los mensajes sin texto muestran un placeholder."""
        return self.content or MEDIA_PREVIEW


class Conversation(_WireModel):
    """Resumen de una conversación identificada por el handle del contacto."""

    phone_number: str = Field(..., min_length=1)
    contact_name: str | None = None
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    unread_count: int = Field(default=0, ge=0)
    can_send_freeform: bool = False
    stage: ConversationStage = ConversationStage.NEW
    role: ChatRole = ChatRole.LEAD
    funnel_stage: FunnelStage = FunnelStage.INBOUND
    assigned_handyman_id: str | None = None

    @field_validator("unread_count", mode="before")
    @classmethod
    def _unread_or_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("last_message_at")
    @classmethod
    def _last_message_at_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("stage", mode="before")
    @classmethod
    def _parse_stage(cls, value: Any) -> ConversationStage:
        return ConversationStage.NEW if value is None else ConversationStage.parse(value)

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> ChatRole:
        return ChatRole.LEAD if value is None else ChatRole.parse(value)

    @field_validator("funnel_stage", mode="before")
    @classmethod
    def _parse_funnel_stage(cls, value: Any) -> FunnelStage:
        return FunnelStage.INBOUND if value is None else FunnelStage.parse(value)

    @property
    def identity(self) -> str:
        return self.phone_number

    @property
    def display_name(self) -> str:
        """Nombre visible; sin nombre usa el número sin el sufijo `@c.us`."""
        if self.contact_name:
            return self.contact_name
        return self.phone_number.removesuffix("@c.us")

    def merged(self, fields: dict[str, Any]) -> "Conversation":
        """Mezcla superficial de `fields` (camelCase o snake_case) y revalida.

        La identidad no se modifica por esta vía.
        """
        current = self.model_dump(by_alias=True)
        for key, value in fields.items():
            wire_key = to_camel(key) if "_" in key else key
            if wire_key == "phoneNumber":
                continue
            current[wire_key] = value
        return Conversation.model_validate(current)

    def classified(self, metadata: "ChatMetadata") -> "Conversation":
        """Aplica la clasificación de intake guardada por la plataforma."""
        update: dict[str, Any] = {
            "role": metadata.role,
            "funnel_stage": metadata.stage,
            "assigned_handyman_id": metadata.assigned_handyman_id,
        }
        if metadata.name:
            update["contact_name"] = metadata.name
        return self.model_copy(update=update)


class ChatMetadata(_WireModel):
    """Clasificación de intake de un chat (`whatsapp:metadata`).

    La plataforma guarda la etapa del embudo bajo la clave `stage`.
    """

    role: ChatRole = ChatRole.LEAD
    stage: FunnelStage = FunnelStage.INBOUND
    name: str | None = None
    assigned_handyman_id: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> ChatRole:
        return ChatRole.LEAD if value is None else ChatRole.parse(value)

    @field_validator("stage", mode="before")
    @classmethod
    def _parse_stage(cls, value: Any) -> FunnelStage:
        return FunnelStage.INBOUND if value is None else FunnelStage.parse(value)
