"""Vocabularios cerrados del inbox y sus transiciones explícitas.

Los valores llegan como strings desde la plataforma; cualquier valor fuera
del vocabulario se rechaza con `UnknownValueError` en lugar de propagarse.
La excepción es `MessageType`, que sólo afecta la presentación y cae en
`other`.
"""

from __future__ import annotations

from enum import StrEnum


class UnknownValueError(ValueError):
    """El valor recibido no pertenece al vocabulario esperado."""


class InvalidTransitionError(ValueError):
    """La transición solicitada no existe en la máquina de estados."""


class _ClosedEnum(StrEnum):
    @classmethod
    def parse(cls, value: object):
        """Convierte `value` al miembro correspondiente o falla."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        allowed = ", ".join(member.value for member in cls)
        raise UnknownValueError(f"{cls.__name__}: '{value}' no es uno de [{allowed}]")


class ConversationStage(_ClosedEnum):
    NEW = "new"
    ACTIVE = "active"
    WAITING = "waiting"
    CLOSED = "closed"


class ChatRole(_ClosedEnum):
    LEAD = "lead"
    HANDYMAN = "handyman"


class FunnelStage(_ClosedEnum):
    """Etapas del embudo de intake para contactos con rol `lead`."""

    INBOUND = "inbound"
    ASCERTAINING = "ascertaining"
    DECISION = "decision"
    ACTIONED = "actioned"

    def advance(self) -> FunnelStage:
        """Siguiente etapa del embudo; `actioned` es terminal."""
        if self is FunnelStage.INBOUND:
            return FunnelStage.ASCERTAINING
        if self is FunnelStage.ASCERTAINING:
            return FunnelStage.DECISION
        if self is FunnelStage.DECISION:
            return FunnelStage.ACTIONED
        if self is FunnelStage.ACTIONED:
            raise InvalidTransitionError("actioned es la etapa final del embudo")
        raise AssertionError(f"Etapa sin transición definida: {self}")  # pragma: no cover


class MessageDirection(_ClosedEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(_ClosedEnum):
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageType(_ClosedEnum):
    """Tipo de contenido; sólo se usa para mostrar el mensaje.

    Incluye los tipos MIME mayores (`application`, `file`) y los tipos de la
    API de Meta. Cualquier otro valor se normaliza a `other`.
    """

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    TEMPLATE = "template"
    PTT = "ptt"
    APPLICATION = "application"
    FILE = "file"
    LOCATION = "location"
    CONTACTS = "contacts"
    STICKER = "sticker"
    INTERACTIVE = "interactive"
    REACTION = "reaction"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: object) -> MessageType:
        """Como `parse`, pero un valor desconocido no invalida el mensaje."""
        if value is None:
            return cls.TEXT
        try:
            return cls.parse(value)
        except UnknownValueError:
            return cls.OTHER


class ConnectionSignal(_ClosedEnum):
    CONNECTING = "connecting"
    OPENED = "opened"
    CLOSED = "closed"


class ConnectionState(_ClosedEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    def transition(self, signal: ConnectionSignal) -> ConnectionState:
        """Aplica una señal del ciclo de vida de la conexión."""
        if signal is ConnectionSignal.CONNECTING:
            if self is ConnectionState.DISCONNECTED:
                return ConnectionState.CONNECTING
        elif signal is ConnectionSignal.OPENED:
            if self is ConnectionState.CONNECTING:
                return ConnectionState.CONNECTED
        elif signal is ConnectionSignal.CLOSED:
            if self in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                return ConnectionState.DISCONNECTED
        raise InvalidTransitionError(f"{self.value} no acepta la señal {signal.value}")


class UnreadState(_ClosedEnum):
    ZERO = "zero"
    NONZERO = "nonzero"

    @classmethod
    def of(cls, count: int) -> UnreadState:
        if count < 0:
            raise ValueError("unreadCount no puede ser negativo")
        return cls.ZERO if count == 0 else cls.NONZERO
