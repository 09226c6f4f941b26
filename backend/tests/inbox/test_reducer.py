"""Pruebas del reducer del inbox sin conexión real."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import pytest

from app.inbox.reducer import (
    ConnectionClosed,
    ConnectionOpened,
    ConnectionStarted,
    ConversationSelected,
    ErrorDismissed,
    SendFinished,
    SendStarted,
    reduce,
)
from app.inbox.schemas import InvalidEventError, parse_event
from app.inbox.state import InboxState
from app.models.conversation import Conversation, Message
from app.models.vocabulary import (
    ChatRole,
    ConnectionState,
    ConversationStage,
    FunnelStage,
    InvalidTransitionError,
    MessageType,
)


def _conversation(phone: str, unread: int = 0, **extra: Any) -> dict[str, Any]:
    return {
        "phoneNumber": phone,
        "contactName": extra.pop("contactName", None),
        "lastMessagePreview": "hola",
        "lastMessageAt": "2026-01-05T09:00:00Z",
        "unreadCount": unread,
        "canSendFreeform": True,
        "stage": "active",
        **extra,
    }


def _message(
    message_id: str,
    *,
    direction: str = "inbound",
    content: str = "hola",
    created_at: str = "2026-01-05T10:00:00Z",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": message_id,
        "direction": direction,
        "content": content,
        "type": "text",
        "status": "delivered",
        "createdAt": created_at,
        **extra,
    }


def _event(payload: dict[str, Any]):
    return parse_event(json.dumps(payload))


def _snapshot(*conversations: dict[str, Any]):
    return _event({"type": "inbox:conversations", "data": list(conversations)})


def _new_message(conversation_id: str, message: dict[str, Any]):
    return _event(
        {
            "type": "inbox:message",
            "data": {"conversationId": conversation_id, "message": message},
        }
    )


def _history(conversation_id: str, *messages: dict[str, Any], error: str | None = None):
    payload: dict[str, Any] = {
        "type": "inbox:messages",
        "conversationId": conversation_id,
        "data": list(messages),
    }
    if error:
        payload["error"] = error
    return _event(payload)


def _ids(state: InboxState) -> list[str]:
    return [conversation.phone_number for conversation in state.conversations]


def _unread(state: InboxState, phone: str) -> int:
    conversation = state.find(phone)
    assert conversation is not None
    return conversation.unread_count


@pytest.fixture(name="listed")
def fixture_listed() -> InboxState:
    return reduce(
        InboxState(),
        _snapshot(_conversation("A"), _conversation("B", unread=2), _conversation("C", unread=1)),
    )


def test_snapshot_replaces_conversations_wholesale(listed: InboxState) -> None:
    state = reduce(listed, _snapshot(_conversation("Z")))
    assert _ids(state) == ["Z"]


def test_snapshot_keeps_first_entry_per_identity() -> None:
    state = reduce(
        InboxState(), _snapshot(_conversation("A", unread=3), _conversation("A", unread=9))
    )
    assert _ids(state) == ["A"]
    assert _unread(state, "A") == 3


def test_reduce_does_not_mutate_input(listed: InboxState) -> None:
    before = listed.conversations
    reduce(listed, _new_message("C", _message("m1")))
    assert listed.conversations == before
    assert _ids(listed) == ["A", "B", "C"]


def test_duplicate_message_id_is_appended_once(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _history("A"))
    event = _new_message("A", _message("m-dup"))
    state = reduce(state, event)
    state = reduce(state, event)
    assert [message.id for message in state.messages] == ["m-dup"]


def test_select_zeroes_unread_immediately(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("B"))
    assert _unread(state, "B") == 0
    assert state.selected_id == "B"
    assert state.messages == ()
    assert state.messages_loading is True
    assert _unread(state, "C") == 1


def test_inbound_for_selected_does_not_increment_unread(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("B"))
    state = reduce(state, _new_message("B", _message("m1")))
    state = reduce(state, _new_message("B", _message("m2", created_at="2026-01-05T10:01:00Z")))
    assert _unread(state, "B") == 0
    assert [message.id for message in state.messages] == ["m1", "m2"]


def test_new_message_moves_conversation_to_front(listed: InboxState) -> None:
    state = reduce(listed, _new_message("C", _message("m1", content="¿Pueden venir hoy?")))
    assert _ids(state) == ["C", "A", "B"]
    conversation = state.conversations[0]
    assert conversation.last_message_preview == "¿Pueden venir hoy?"
    assert conversation.last_message_at == datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
    assert conversation.unread_count == 2


def test_outbound_echo_updates_preview_without_unread(listed: InboxState) -> None:
    state = reduce(listed, _new_message("B", _message("m1", direction="outbound", content="Ok")))
    assert _ids(state) == ["B", "A", "C"]
    assert _unread(state, "B") == 2
    assert state.conversations[0].last_message_preview == "Ok"


def test_media_message_uses_placeholder_preview(listed: InboxState) -> None:
    media = _message("m1", content="", type="image", mediaUrl="/api/media/m1.jpg")
    state = reduce(listed, _new_message("A", media))
    assert state.conversations[0].last_message_preview == "Media"


def test_equal_timestamps_order_by_arrival(listed: InboxState) -> None:
    same_time = "2026-01-05T12:00:00Z"
    state = reduce(listed, _new_message("B", _message("m1", created_at=same_time)))
    state = reduce(state, _new_message("C", _message("m2", created_at=same_time)))
    assert _ids(state) == ["C", "B", "A"]
    state = reduce(state, _new_message("B", _message("m3", created_at=same_time)))
    assert _ids(state) == ["B", "C", "A"]


def test_new_message_for_unknown_conversation_does_not_create_it(listed: InboxState) -> None:
    state = reduce(listed, _new_message("X", _message("m1")))
    assert _ids(state) == ["A", "B", "C"]
    assert state.find("X") is None


def test_stale_history_reply_is_discarded(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, ConversationSelected("B"))
    state = reduce(state, _history("A", _message("a1")))
    assert state.messages == ()
    assert state.messages_loading is True

    state = reduce(state, _history("B", _message("b1")))
    state = reduce(state, _history("A", _message("a2")))
    assert [message.id for message in state.messages] == ["b1"]
    assert state.messages_loading is False


def test_history_is_sorted_ascending(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(
        state,
        _history(
            "A",
            _message("late", created_at="2026-01-05T11:00:00Z"),
            _message("early", created_at="2026-01-05T08:00:00Z"),
        ),
    )
    assert [message.id for message in state.messages] == ["early", "late"]


def test_late_arrival_is_inserted_in_created_order(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _history("A", _message("m2", created_at="2026-01-05T11:00:00Z")))
    state = reduce(state, _new_message("A", _message("m1", created_at="2026-01-05T10:30:00Z")))
    assert [message.id for message in state.messages] == ["m1", "m2"]


def test_history_error_is_recorded(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _history("A", error="Conversation not found"))
    assert state.last_error == "Conversation not found"
    assert state.messages_loading is False


def test_conversation_update_merges_fields(listed: InboxState) -> None:
    event = _event(
        {
            "type": "inbox:conversation_update",
            "data": {
                "conversationId": "B",
                "updates": {"canSendFreeform": False, "stage": "waiting", "role": "handyman"},
            },
        }
    )
    state = reduce(listed, event)
    conversation = state.find("B")
    assert conversation is not None
    assert conversation.can_send_freeform is False
    assert conversation.stage is ConversationStage.WAITING
    assert conversation.role is ChatRole.HANDYMAN
    assert conversation.unread_count == 2
    assert _ids(state) == ["A", "B", "C"]


def test_conversation_update_with_unknown_stage_is_rejected(listed: InboxState) -> None:
    event = _event(
        {
            "type": "inbox:conversation_update",
            "data": {"conversationId": "B", "updates": {"stage": "archived"}},
        }
    )
    with pytest.raises(InvalidEventError):
        reduce(listed, event)


def test_conversation_update_cannot_change_identity(listed: InboxState) -> None:
    event = _event(
        {
            "type": "inbox:conversation_update",
            "data": {"conversationId": "A", "updates": {"phoneNumber": "B"}},
        }
    )
    state = reduce(listed, event)
    assert _ids(state) == ["A", "B", "C"]


def test_error_event_clears_loading(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _event({"type": "inbox:error", "error": "Failed to fetch messages"}))
    assert state.messages_loading is False
    assert state.last_error == "Failed to fetch messages"
    assert reduce(state, ErrorDismissed()).last_error is None


def test_connection_lifecycle() -> None:
    state = reduce(InboxState(), ConnectionStarted())
    assert state.connection_state is ConnectionState.CONNECTING
    state = reduce(state, ConnectionOpened())
    assert state.connection_state is ConnectionState.CONNECTED
    state = reduce(state, ConnectionClosed())
    assert state.connection_state is ConnectionState.DISCONNECTED
    with pytest.raises(InvalidTransitionError):
        reduce(state, ConnectionOpened())


def test_send_flags() -> None:
    state = reduce(replace(InboxState(), last_error="viejo"), SendStarted())
    assert state.sending is True
    assert state.last_error is None
    state = reduce(state, SendFinished(error="Send failed"))
    assert state.sending is False
    assert state.last_error == "Send failed"


def test_unknown_event_type_raises_type_error() -> None:
    with pytest.raises(TypeError):
        reduce(InboxState(), object())  # type: ignore[arg-type]


def test_inbound_for_other_conversation_while_one_is_selected() -> None:
    a = Conversation(phone_number="A", unread_count=0)
    b = Conversation(phone_number="B", unread_count=2)
    history = Message.model_validate(_message("b1", created_at="2026-01-05T08:00:00Z"))
    state = InboxState(
        connection_state=ConnectionState.CONNECTED,
        conversations=(a, b),
        selected_id="B",
        messages=(history,),
    )

    state = reduce(state, _new_message("A", _message("a1")))

    assert _unread(state, "A") == 1
    assert _ids(state) == ["A", "B"]
    assert _unread(state, "B") == 2
    assert state.messages == (history,)


def test_new_message_with_unlisted_type_is_reconciled(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _history("A"))
    location = _message("loc-1", content="📍 Location: 51.5, -0.1", type="location")

    state = reduce(state, _new_message("B", location))
    state = reduce(state, _new_message("A", _message("sticker-1", content="", type="sticker")))

    assert _ids(state) == ["A", "B", "C"]
    assert _unread(state, "B") == 3
    assert state.find("B").last_message_preview == "📍 Location: 51.5, -0.1"
    assert [message.type for message in state.messages] == [MessageType.STICKER]


def test_history_with_mime_major_type_clears_loading(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(
        state,
        _history(
            "A",
            _message("m1", created_at="2026-01-05T09:00:00Z"),
            _message("m2", content="", type="application", mediaType="application/pdf"),
            _message("m3", content="", type="hologram", created_at="2026-01-05T11:00:00Z"),
        ),
    )
    assert state.messages_loading is False
    assert [message.type for message in state.messages] == [
        MessageType.TEXT,
        MessageType.APPLICATION,
        MessageType.OTHER,
    ]


def test_inbound_for_selected_resets_server_count(listed: InboxState) -> None:
    state = reduce(listed, ConversationSelected("A"))
    state = reduce(state, _snapshot(_conversation("A", unread=3), _conversation("B")))
    assert _unread(state, "A") == 3

    state = reduce(state, _new_message("A", _message("m1")))
    assert _unread(state, "A") == 0


def _metadata(entries: dict[str, dict[str, Any]]):
    return _event({"type": "whatsapp:metadata", "data": entries})


def test_metadata_classifies_listed_conversations(listed: InboxState) -> None:
    state = reduce(
        listed,
        _metadata(
            {
                "B": {"role": "handyman", "stage": "inbound", "name": "Juan"},
                "C": {"role": "lead", "stage": "decision", "assignedHandymanId": "B"},
                "X": {"role": "lead", "stage": "actioned"},
            }
        ),
    )
    b, c = state.find("B"), state.find("C")
    assert b.role is ChatRole.HANDYMAN
    assert b.contact_name == "Juan"
    assert c.funnel_stage is FunnelStage.DECISION
    assert c.assigned_handyman_id == "B"
    assert state.find("A").funnel_stage is FunnelStage.INBOUND
    assert _ids(state) == ["A", "B", "C"]


def test_metadata_received_before_list_is_applied_to_snapshot() -> None:
    state = reduce(InboxState(), _metadata({"A": {"role": "lead", "stage": "ascertaining"}}))
    state = reduce(state, _snapshot(_conversation("A"), _conversation("B")))
    assert state.find("A").funnel_stage is FunnelStage.ASCERTAINING
    assert state.find("B").funnel_stage is FunnelStage.INBOUND


def test_metadata_with_unknown_stage_is_rejected() -> None:
    with pytest.raises(InvalidEventError):
        _metadata({"A": {"role": "lead", "stage": "archived"}})
