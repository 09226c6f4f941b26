"""Controlador de la sesión del inbox.

`InboxSession` es el único dueño del estado, de la conexión al stream y del
cliente REST. Todos los cambios de estado pasan por `reducer.reduce`; aquí
sólo viven los efectos (comandos por el stream, llamadas REST, logging).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from app.core.logging import get_logger, log_event
from app.core.security import mask_phone
from app.models.conversation import Conversation
from app.models.vocabulary import ChatRole, ConnectionState, FunnelStage, InvalidTransitionError
from app.services.gateway import GatewayClient, GatewayError

from . import projection
from .reducer import (
    ConnectionClosed,
    ConnectionOpened,
    ConnectionStarted,
    ConversationSelected,
    ErrorDismissed,
    InboxEvent,
    SendFinished,
    SendStarted,
    reduce,
)
from .schemas import (
    InboxErrorEvent,
    InboxReady,
    InvalidEventError,
    MessageHistory,
    OutboundCommand,
    ServerEvent,
    get_conversations_command,
    get_messages_command,
    mark_read_command,
    parse_event,
    set_metadata_command,
)
from .state import InboxState
from .transport import ConnectionFactory, InboxConnection, TransportError

logger = get_logger("app.inbox")


class InboxSessionError(RuntimeError):
    """Errores de alto nivel al operar el inbox."""


class ConversationNotFoundError(InboxSessionError):
    pass


class NoConversationSelectedError(InboxSessionError):
    pass


class InvalidCommandError(InboxSessionError):
    pass


class NotConnectedError(InboxSessionError):
    pass


class SendInProgressError(InboxSessionError):
    """Ya hay un envío en curso; se rechaza para evitar duplicados."""


class InboxSendError(InboxSessionError):
    """La plataforma rechazó o no recibió el envío."""


class InboxSession:
    """Orquesta el stream push, los comandos del operador y el estado derivado."""

    def __init__(
        self,
        *,
        connection_factory: ConnectionFactory,
        gateway: GatewayClient,
        state: InboxState | None = None,
    ) -> None:
        self._state = state or InboxState()
        self._connection_factory = connection_factory
        self._gateway = gateway
        self._connection: InboxConnection | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def state(self) -> InboxState:
        return self._state

    def _apply(self, event: InboxEvent) -> InboxState:
        self._state = reduce(self._state, event)
        return self._state

    # ------------------------------------------------------------------
    # Ciclo de vida de la conexión
    # ------------------------------------------------------------------

    async def connect(self) -> InboxState:
        """Abre el stream y arranca la lectura en segundo plano.

        No hay reconexión automática: tras un cierre el operador vuelve a
        invocar `connect()`.
        """
        if self._state.connection_state is not ConnectionState.DISCONNECTED:
            return self._state
        self._apply(ConnectionStarted())
        try:
            connection = await self._connection_factory()
        except TransportError as exc:
            self._apply(ConnectionClosed(reason=str(exc)))
            log_event(logger, "inbox.connect_failed", level=logging.WARNING, error=str(exc))
            raise NotConnectedError(str(exc)) from exc

        self._connection = connection
        self._apply(ConnectionOpened())
        log_event(logger, "inbox.connected")
        self._reader = asyncio.create_task(self._read_loop(connection))
        return self._state

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        if connection is not None:
            with contextlib.suppress(TransportError, OSError):
                await connection.close()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if self._state.connection_state is not ConnectionState.DISCONNECTED:
            self._apply(ConnectionClosed(reason="closed locally"))

    async def _read_loop(self, connection: InboxConnection) -> None:
        try:
            async for frame in connection.frames():
                await self.handle_frame(frame)
        finally:
            if self._connection is connection:
                self._connection = None
            if self._state.connection_state is not ConnectionState.DISCONNECTED:
                self._apply(ConnectionClosed())
                log_event(logger, "inbox.connection_closed", level=logging.WARNING)

    async def wait_closed(self) -> None:
        """Espera a que termine la lectura del stream (útil en scripts y pruebas)."""
        if self._reader is not None:
            await self._reader

    # ------------------------------------------------------------------
    # Eventos del stream
    # ------------------------------------------------------------------

    async def handle_frame(self, frame: str | bytes) -> None:
        """Interpreta un frame crudo; los frames inválidos se descartan."""
        try:
            event = parse_event(frame)
        except InvalidEventError as exc:
            log_event(
                logger,
                "inbox.event_dropped",
                level=logging.WARNING,
                reason="unparseable",
                error=str(exc)[:500],
            )
            return
        await self.handle_event(event)

    async def handle_event(self, event: ServerEvent) -> None:
        if isinstance(event, MessageHistory) and event.conversation_id != self._state.selected_id:
            log_event(
                logger,
                "inbox.stale_history_discarded",
                level=logging.DEBUG,
                conversation_id=mask_phone(event.conversation_id),
            )
        try:
            self._apply(event)
        except InvalidEventError as exc:
            log_event(
                logger,
                "inbox.event_dropped",
                level=logging.WARNING,
                reason="invalid",
                event_type=event.type,
                error=str(exc)[:500],
            )
            return

        if isinstance(event, InboxReady):
            await self._command(get_conversations_command())
        elif isinstance(event, InboxErrorEvent):
            log_event(logger, "inbox.server_error", level=logging.WARNING, error=event.error)

    async def _command(self, command: OutboundCommand) -> bool:
        connection = self._connection
        if connection is None or self._state.connection_state is not ConnectionState.CONNECTED:
            log_event(
                logger, "inbox.command_skipped", level=logging.WARNING, command=command.type
            )
            return False
        try:
            await connection.send(command.to_wire())
        except TransportError as exc:
            log_event(
                logger,
                "inbox.command_failed",
                level=logging.WARNING,
                command=command.type,
                error=str(exc),
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Comandos del operador
    # ------------------------------------------------------------------

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._state.find(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversación {conversation_id} no encontrada")
        return conversation

    async def select(self, conversation_id: str) -> InboxState:
        """Selecciona una conversación: limpia no leídos, pide historial y marca leído."""
        self._require(conversation_id)
        self._apply(ConversationSelected(conversation_id))
        log_event(logger, "inbox.selected", conversation_id=mask_phone(conversation_id))

        await self._command(get_messages_command(conversation_id))
        if not await self._command(mark_read_command(conversation_id)):
            try:
                await self._gateway.mark_read(conversation_id)
            except GatewayError as exc:
                log_event(
                    logger,
                    "inbox.mark_read_failed",
                    level=logging.WARNING,
                    conversation_id=mask_phone(conversation_id),
                    error=str(exc),
                )
        return self._state

    async def _guarded_send(
        self, send: Callable[[], Awaitable[str | None]], *, kind: str
    ) -> str | None:
        if self._state.sending:
            raise SendInProgressError("Hay un envío en curso")
        self._apply(SendStarted())
        error: str | None = None
        try:
            return await send()
        except GatewayError as exc:
            error = str(exc)
            log_event(logger, "inbox.send_failed", level=logging.ERROR, kind=kind, error=error)
            raise InboxSendError(error) from exc
        finally:
            self._apply(SendFinished(error=error))

    async def send_message(self, body: str) -> str | None:
        """Envía texto a la conversación seleccionada.

        El mensaje no se agrega localmente; aparece cuando la plataforma lo
        reenvía por el stream.
        """
        text = (body or "").strip()
        if not text:
            raise InvalidCommandError("El mensaje está vacío")
        target = self._state.selected_id
        if target is None:
            raise NoConversationSelectedError("No hay conversación seleccionada")

        message_id = await self._guarded_send(
            lambda: self._gateway.send_message(to=target, body=text), kind="freeform"
        )
        log_event(
            logger, "inbox.message_sent", conversation_id=mask_phone(target), message_id=message_id
        )
        return message_id

    async def send_template(
        self,
        template: str,
        *,
        number: str | None = None,
        customer_name: str | None = None,
        context: str | None = None,
    ) -> str | None:
        """Envía una plantilla aprobada; por defecto a la conversación seleccionada."""
        target = number or self._state.selected_id
        if target is None:
            raise NoConversationSelectedError("No hay conversación seleccionada")
        if customer_name is None:
            conversation = self._state.find(target)
            customer_name = conversation.contact_name if conversation else None

        sid = await self._guarded_send(
            lambda: self._gateway.send_template(
                number=target,
                template=template,
                customer_name=customer_name,
                context=context,
            ),
            kind=f"template:{template}",
        )
        log_event(
            logger,
            "inbox.template_sent",
            conversation_id=mask_phone(target),
            template=template,
        )
        return sid

    async def can_send_freeform(self, conversation_id: str) -> bool:
        """Consulta a la plataforma si la ventana permite texto libre."""
        return await self._gateway.can_send_freeform(conversation_id)

    async def classify(
        self,
        conversation_id: str,
        *,
        role: ChatRole | None = None,
        funnel_stage: FunnelStage | None = None,
        name: str | None = None,
        assigned_handyman_id: str | None = None,
    ) -> None:
        """Solicita cambiar la clasificación de intake.

        El estado local cambia cuando la plataforma difunde `whatsapp:metadata`.
        """
        self._require(conversation_id)
        updates: dict[str, str] = {}
        if role is not None:
            updates["role"] = ChatRole.parse(role).value
        if funnel_stage is not None:
            updates["stage"] = FunnelStage.parse(funnel_stage).value
        if name is not None:
            updates["name"] = name
        if assigned_handyman_id is not None:
            updates["assignedHandymanId"] = assigned_handyman_id
        if not updates:
            raise InvalidCommandError("No se indicaron cambios de clasificación")

        if not await self._command(set_metadata_command(conversation_id, updates)):
            raise NotConnectedError("El stream del inbox no está conectado")
        log_event(
            logger,
            "inbox.classification_requested",
            conversation_id=mask_phone(conversation_id),
            fields=sorted(updates),
        )

    async def advance_funnel(self, conversation_id: str) -> FunnelStage:
        conversation = self._require(conversation_id)
        if conversation.role is not ChatRole.LEAD:
            raise InvalidTransitionError("Sólo los leads avanzan en el embudo")
        target = conversation.funnel_stage.advance()
        await self.classify(conversation_id, funnel_stage=target)
        return target

    async def refresh(self) -> None:
        """Pide de nuevo la lista completa; los contadores del servidor reemplazan a los locales."""
        if not await self._command(get_conversations_command()):
            raise NotConnectedError("El stream del inbox no está conectado")

    def dismiss_error(self) -> InboxState:
        return self._apply(ErrorDismissed())

    # ------------------------------------------------------------------
    # Proyecciones
    # ------------------------------------------------------------------

    def visible_conversations(self, query: str | None = None) -> list[Conversation]:
        return projection.filter_conversations(self._state.conversations, query)

    def intake_board(self) -> tuple[dict[FunnelStage, list[Conversation]], list[Conversation]]:
        return projection.intake_board(self._state.conversations)
