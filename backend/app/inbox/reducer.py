"""Reducer del inbox: única función de transición `reduce(state, event)`.

Recibe tanto los eventos del stream (ver `schemas.ServerEvent`) como las
acciones locales del operador/ciclo de vida definidas aquí. Nunca muta el
estado recibido y no tiene efectos secundarios; los comandos hacia la
plataforma los emite `InboxSession`.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Union

from pydantic import ValidationError

from app.models.conversation import ChatMetadata, Conversation, Message
from app.models.vocabulary import ConnectionSignal

from .schemas import (
    ConversationsSnapshot,
    ConversationUpdated,
    InboxErrorEvent,
    InboxReady,
    InvalidEventError,
    MessageHistory,
    MetadataSnapshot,
    NewMessage,
    ServerEvent,
)
from .state import InboxState


@dataclass(frozen=True, slots=True)
class ConnectionStarted:
    """Se inició la apertura del stream."""


@dataclass(frozen=True, slots=True)
class ConnectionOpened:
    """El stream quedó abierto."""


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    """El stream se cerró (servidor, red o cierre local)."""

    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ConversationSelected:
    conversation_id: str


@dataclass(frozen=True, slots=True)
class SendStarted:
    pass


@dataclass(frozen=True, slots=True)
class SendFinished:
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorDismissed:
    pass


LocalAction = Union[
    ConnectionStarted,
    ConnectionOpened,
    ConnectionClosed,
    ConversationSelected,
    SendStarted,
    SendFinished,
    ErrorDismissed,
]
InboxEvent = Union[ServerEvent, LocalAction]


def _unique_by_identity(conversations: list[Conversation]) -> tuple[Conversation, ...]:
    seen: set[str] = set()
    result: list[Conversation] = []
    for conversation in conversations:
        if conversation.phone_number in seen:
            continue
        seen.add(conversation.phone_number)
        result.append(conversation)
    return tuple(result)


def _with_classifications(
    conversations: tuple[Conversation, ...], classifications: Mapping[str, ChatMetadata]
) -> tuple[Conversation, ...]:
    return tuple(
        conversation.classified(classifications[conversation.phone_number])
        if conversation.phone_number in classifications
        else conversation
        for conversation in conversations
    )


def _sorted_history(messages: list[Message]) -> tuple[Message, ...]:
    seen: set[str] = set()
    unique: list[Message] = []
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        unique.append(message)
    return tuple(sorted(unique, key=lambda message: message.created_at))


def _insert_in_order(messages: tuple[Message, ...], message: Message) -> tuple[Message, ...]:
    position = bisect_right([current.created_at for current in messages], message.created_at)
    return messages[:position] + (message,) + messages[position:]


def _on_ready(state: InboxState, _: InboxReady) -> InboxState:
    return state


def _on_conversations(state: InboxState, event: ConversationsSnapshot) -> InboxState:
    conversations = _unique_by_identity(event.data)
    return replace(
        state, conversations=_with_classifications(conversations, state.classifications)
    )


def _on_history(state: InboxState, event: MessageHistory) -> InboxState:
    if event.conversation_id != state.selected_id:
        return state
    return replace(
        state,
        messages=_sorted_history(event.data),
        messages_loading=False,
        last_error=event.error or state.last_error,
    )


def _on_new_message(state: InboxState, event: NewMessage) -> InboxState:
    conversation_id = event.data.conversation_id
    message = event.data.message
    is_selected = conversation_id == state.selected_id

    conversations = state.conversations
    index = state.index_of(conversation_id)
    if index is not None:
        current = conversations[index]
        unread = current.unread_count
        if message.is_inbound:
            # La conversación abierta queda siempre en cero
            unread = 0 if is_selected else unread + 1
        updated = current.model_copy(
            update={
                "last_message_preview": message.preview,
                "last_message_at": message.created_at,
                "unread_count": unread,
            }
        )
        conversations = (updated,) + conversations[:index] + conversations[index + 1 :]

    messages = state.messages
    if is_selected and all(existing.id != message.id for existing in messages):
        messages = _insert_in_order(messages, message)

    return replace(state, conversations=conversations, messages=messages)


def _on_conversation_update(state: InboxState, event: ConversationUpdated) -> InboxState:
    index = state.index_of(event.data.conversation_id)
    if index is None:
        return state
    try:
        merged = state.conversations[index].merged(event.data.updates)
    except ValidationError as exc:
        raise InvalidEventError(str(exc)) from exc
    conversations = state.conversations[:index] + (merged,) + state.conversations[index + 1 :]
    return replace(state, conversations=conversations)


def _on_metadata(state: InboxState, event: MetadataSnapshot) -> InboxState:
    classifications = dict(event.data)
    return replace(
        state,
        classifications=classifications,
        conversations=_with_classifications(state.conversations, classifications),
    )


def _on_error(state: InboxState, event: InboxErrorEvent) -> InboxState:
    return replace(state, last_error=event.error, messages_loading=False)


def _on_connection_started(state: InboxState, _: ConnectionStarted) -> InboxState:
    return replace(
        state, connection_state=state.connection_state.transition(ConnectionSignal.CONNECTING)
    )


def _on_connection_opened(state: InboxState, _: ConnectionOpened) -> InboxState:
    return replace(
        state, connection_state=state.connection_state.transition(ConnectionSignal.OPENED)
    )


def _on_connection_closed(state: InboxState, _: ConnectionClosed) -> InboxState:
    return replace(
        state, connection_state=state.connection_state.transition(ConnectionSignal.CLOSED)
    )


def _on_selected(state: InboxState, action: ConversationSelected) -> InboxState:
    conversations = tuple(
        conversation.model_copy(update={"unread_count": 0})
        if conversation.phone_number == action.conversation_id and conversation.unread_count
        else conversation
        for conversation in state.conversations
    )
    return replace(
        state,
        conversations=conversations,
        selected_id=action.conversation_id,
        messages=(),
        messages_loading=True,
    )


def _on_send_started(state: InboxState, _: SendStarted) -> InboxState:
    return replace(state, sending=True, last_error=None)


def _on_send_finished(state: InboxState, action: SendFinished) -> InboxState:
    return replace(state, sending=False, last_error=action.error or state.last_error)


def _on_error_dismissed(state: InboxState, _: ErrorDismissed) -> InboxState:
    return replace(state, last_error=None)


_HANDLERS: dict[type, Callable[[InboxState, Any], InboxState]] = {
    InboxReady: _on_ready,
    ConversationsSnapshot: _on_conversations,
    MessageHistory: _on_history,
    NewMessage: _on_new_message,
    ConversationUpdated: _on_conversation_update,
    MetadataSnapshot: _on_metadata,
    InboxErrorEvent: _on_error,
    ConnectionStarted: _on_connection_started,
    ConnectionOpened: _on_connection_opened,
    ConnectionClosed: _on_connection_closed,
    ConversationSelected: _on_selected,
    SendStarted: _on_send_started,
    SendFinished: _on_send_finished,
    ErrorDismissed: _on_error_dismissed,
}


def reduce(state: InboxState, event: InboxEvent) -> InboxState:
    """Aplica `event` sobre `state` y retorna el estado resultante.

    Raises:
        InvalidEventError: el evento no puede aplicarse (ej. metadatos fuera de vocabulario).
        InvalidTransitionError: señal de conexión no válida para el estado actual.
        TypeError: tipo de evento sin handler registrado.
    """
    try:
        handler = _HANDLERS[type(event)]
    except KeyError as exc:
        raise TypeError(f"Evento sin handler: {type(event).__name__}") from exc
    return handler(state, event)
