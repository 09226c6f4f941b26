"""Proyección en memoria del inbox para una sesión de operador."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from app.models.conversation import ChatMetadata, Conversation, Message
from app.models.vocabulary import ConnectionState


@dataclass(frozen=True, slots=True)
class InboxState:
    """Valor inmutable; cada transición produce una instancia nueva."""

    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    conversations: tuple[Conversation, ...] = field(default_factory=tuple)
    selected_id: str | None = None
    messages: tuple[Message, ...] = field(default_factory=tuple)
    messages_loading: bool = False
    sending: bool = False
    last_error: str | None = None
    # Último mapa `whatsapp:metadata`, por chatId
    classifications: Mapping[str, ChatMetadata] = field(default_factory=dict)

    def find(self, conversation_id: str) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.phone_number == conversation_id:
                return conversation
        return None

    def index_of(self, conversation_id: str) -> int | None:
        for index, conversation in enumerate(self.conversations):
            if conversation.phone_number == conversation_id:
                return index
        return None

    @property
    def unread_total(self) -> int:
        return sum(conversation.unread_count for conversation in self.conversations)
