"""Proyecciones puras sobre la lista de conversaciones (búsqueda, tablero de intake)."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from app.models.conversation import Conversation
from app.models.vocabulary import ChatRole, FunnelStage


def matches(conversation: Conversation, query: str) -> bool:
    """Coincidencia case-insensitive sobre nombre visible o identidad."""
    needle = query.strip().lower()
    if not needle:
        return True
    if conversation.contact_name and needle in conversation.contact_name.lower():
        return True
    return needle in conversation.phone_number.lower()


def filter_conversations(
    conversations: Sequence[Conversation], query: str | None
) -> list[Conversation]:
    """Subconjunto visible para `query`; la secuencia original no se toca."""
    if not query or not query.strip():
        return list(conversations)
    return [conversation for conversation in conversations if matches(conversation, query)]


def intake_board(
    conversations: Iterable[Conversation],
) -> tuple[dict[FunnelStage, list[Conversation]], list[Conversation]]:
    """Agrupa leads por etapa del embudo y separa a los handymen.

    Conserva el orden de entrada (más reciente primero) dentro de cada grupo.
    """
    leads: dict[FunnelStage, list[Conversation]] = {stage: [] for stage in FunnelStage}
    handymen: list[Conversation] = []
    for conversation in conversations:
        if conversation.role is ChatRole.HANDYMAN:
            handymen.append(conversation)
        else:
            leads[conversation.funnel_stage].append(conversation)
    return leads, handymen


def format_last_activity(value: datetime | None, *, now: datetime | None = None) -> str:
    """Etiqueta corta para la lista: hora (<24h), `Yesterday` (<48h) o fecha."""
    if value is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    hours = (now - value).total_seconds() / 3600
    if hours < 24:
        return value.strftime("%H:%M")
    if hours < 48:
        return "Yesterday"
    return value.strftime("%d/%m/%Y")
