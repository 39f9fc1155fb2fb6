"""Gerenciador da sessão de transporte (bring-up, pareamento, recuperação).

Responsabilidades:
- Ser o único dono do handle de transporte (no máximo um vivo por vez)
- Conduzir a sessão até CONNECTED e mantê-la lá
- Aplicar eventos do transporte via tabela de transições (FSM explícita)
- Expor snapshot de status e primitivas de envio serializadas

Modelo de concorrência (asyncio):
- Eventos do transporte entram numa fila; uma única task (pump) aplica
- Bring-up roda numa única task compartilhada (single-flight)
- Toda operação sobre o handle (criar, destruir, enviar) passa pelo
  mesmo asyncio.Lock
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from zaprelay.domain.errors import (
    BringUpFailure,
    ErrorKind,
    InvalidTransitionError,
    NotReadyError,
)
from zaprelay.domain.session import (
    BRING_UP_END_STATES,
    BRING_UP_STATES,
    SETTLED_STATES,
    SessionState,
    SessionTrigger,
    validate_transition,
)
from zaprelay.domain.transport_events import TransportEvent, TransportEventType
from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    from zaprelay.config.settings import Settings
    from zaprelay.domain.delivery import TransportReceipt
    from zaprelay.domain.protocols.transport import (
        EventSink,
        TransportFactory,
        TransportProtocol,
    )

logger: logging.Logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Estados que encerram uma tentativa de bring-up (RECONNECTING reinicia o ciclo)
_ATTEMPT_STOP_STATES = frozenset({
    SessionState.CONNECTED,
    SessionState.DISCONNECTED,
    SessionState.FAILED,
    SessionState.RECONNECTING,
})


@dataclass(frozen=True)
class SessionConfig:
    """Temporizações e limites do bring-up."""

    watchdog_seconds: float = 120.0
    max_bring_up_retries: int = 3
    init_retry_delay_seconds: float = 5.0
    timeout_retry_delay_seconds: float = 10.0
    reconnect_delay_seconds: float = 5.0
    restart_settle_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionConfig:
        return cls(
            watchdog_seconds=settings.session_watchdog_seconds,
            max_bring_up_retries=settings.session_max_bring_up_retries,
            init_retry_delay_seconds=settings.session_init_retry_delay_seconds,
            timeout_retry_delay_seconds=settings.session_timeout_retry_delay_seconds,
            reconnect_delay_seconds=settings.session_reconnect_delay_seconds,
            restart_settle_seconds=settings.session_restart_settle_seconds,
        )


@dataclass(frozen=True, slots=True)
class SessionStatus:
    """Snapshot somente leitura do estado da sessão."""

    state: SessionState
    pairing_challenge: str | None
    retry_count: int
    last_error: str | None
    updated_at: datetime

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_ready": self.is_ready,
            "pairing_challenge": self.pairing_challenge,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat(),
        }


class SessionManager:
    """Dono único do handle de transporte e da FSM da sessão.

    Uso típico:
        manager = SessionManager(transport_factory)
        status = await manager.initialize()   # PAIRING_REQUIRED → exibir QR
        ...
        await manager.close()
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        config: SessionConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport_factory = transport_factory
        self._config = config or SessionConfig()
        self._sleep = sleep

        self._state = SessionState.DISCONNECTED
        self._pairing_challenge: str | None = None
        self._retry_count = 0
        self._last_error: str | None = None
        self._updated_at = datetime.now(tz=UTC)
        self._state_changed = asyncio.Event()

        self._transport: TransportProtocol | None = None
        self._generation = 0
        self._handle_lock = asyncio.Lock()

        self._events: asyncio.Queue[tuple[int, TransportEvent]] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._bring_up_task: asyncio.Task[SessionStatus] | None = None

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.CONNECTED

    def get_status(self) -> SessionStatus:
        """Snapshot imediato; nunca bloqueia."""
        return SessionStatus(
            state=self._state,
            pairing_challenge=self._pairing_challenge,
            retry_count=self._retry_count,
            last_error=self._last_error,
            updated_at=self._updated_at,
        )

    async def initialize(self) -> SessionStatus:
        """Sobe a sessão (idempotente, single-flight).

        Retorna quando o bring-up assenta: PAIRING_REQUIRED (desafio
        disponível), CONNECTED, DISCONNECTED ou FAILED. Chamadas
        concorrentes aguardam a mesma tentativa em curso.

        Raises:
            BringUpFailure: tentativas esgotadas, autenticação recusada
                ou sessão já em FAILED (exige restart()).
        """
        return await self._begin(SessionTrigger.INITIALIZE)

    async def disconnect(self) -> None:
        """Derruba o handle em qualquer estado; falhas de teardown só são logadas."""
        task = self._bring_up_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        async with self._handle_lock:
            await self._destroy_handle()

        self._pairing_challenge = None
        self._retry_count = 0
        self._transition(SessionTrigger.DISCONNECT)
        logger.info("session_disconnected")

    async def restart(self) -> SessionStatus:
        """disconnect() + espera de acomodação + novo bring-up."""
        logger.info("session_restart_requested", extra={"state": self._state.value})
        await self.disconnect()
        await self._sleep(self._config.restart_settle_seconds)
        return await self._begin(SessionTrigger.RESTART)

    async def close(self) -> None:
        """Encerra a sessão e a task de eventos (shutdown da aplicação)."""
        await self.disconnect()
        pump = self._pump_task
        self._pump_task = None
        if pump is not None and not pump.done():
            pump.cancel()
            await asyncio.wait({pump})

    async def send_text(self, routing_id: str, text: str) -> TransportReceipt:
        """Primitiva de envio: único caminho até transport.send_message.

        Raises:
            NotReadyError: sessão fora de CONNECTED (transporte não é chamado).
        """
        self._require_connected()
        async with self._handle_lock:
            transport = self._require_connected()
            return await transport.send_message(routing_id, text)

    async def resolve_address(self, routing_id: str) -> bool | None:
        """Verifica se o endereço existe no transporte (None = desconhecido)."""
        self._require_connected()
        async with self._handle_lock:
            transport = self._require_connected()
            return await transport.resolve_address(routing_id)

    # ------------------------------------------------------------------
    # Bring-up
    # ------------------------------------------------------------------

    async def _begin(self, trigger: SessionTrigger) -> SessionStatus:
        self._ensure_pump()

        task = self._bring_up_task
        if task is not None and not task.done():
            logger.info("bring_up_joined", extra={"state": self._state.value})
            return await self._wait_settled(task)

        if self._state == SessionState.CONNECTED:
            return self.get_status()
        if self._state == SessionState.FAILED and trigger == SessionTrigger.INITIALIZE:
            raise BringUpFailure(
                f"Sessão em FAILED ({self._last_error or 'sem detalhe'}); use restart()"
            )
        if self._state in (SessionState.DISCONNECTED, SessionState.FAILED):
            self._retry_count = 0
            self._transition(trigger)

        return await self._wait_settled(self._start_bring_up())

    def _start_bring_up(self) -> asyncio.Task[SessionStatus]:
        task = self._bring_up_task
        if task is not None and not task.done():
            return task
        task = asyncio.get_running_loop().create_task(
            self._run_bring_up(), name="session-bring-up"
        )
        task.add_done_callback(self._on_bring_up_done)
        self._bring_up_task = task
        return task

    async def _wait_settled(self, task: asyncio.Task[SessionStatus]) -> SessionStatus:
        waiter = asyncio.ensure_future(self._wait_for_state(SETTLED_STATES))
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        # Estado final do bring-up: a task termina em seguida, com o resultado real
        if not task.done() and self._state in BRING_UP_END_STATES:
            await asyncio.wait({task})

        if task.done() and not task.cancelled():
            exc = task.exception()
            if exc is not None:
                raise exc
        return self.get_status()

    def _on_bring_up_done(self, task: asyncio.Task[SessionStatus]) -> None:
        if task.cancelled():
            logger.info("bring_up_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "bring_up_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "retry_count": self._retry_count,
                },
            )

    async def _run_bring_up(self) -> SessionStatus:
        """Laço supervisionado: tenta até CONNECTED, FAILED ou DISCONNECTED."""
        cfg = self._config
        while True:
            if self._state == SessionState.RECONNECTING:
                await self._teardown_transport()
                await self._sleep(cfg.reconnect_delay_seconds)
                self._transition(SessionTrigger.REINITIALIZE)

            try:
                reached = await asyncio.wait_for(
                    self._attempt_bring_up(), timeout=cfg.watchdog_seconds
                )
            except TimeoutError:
                await self._handle_watchdog_timeout()
                continue
            except Exception as exc:
                if self._state in BRING_UP_STATES or self._state == SessionState.FAILED:
                    await self._handle_init_error(exc)
                    continue
                logger.warning(
                    "transport_initialize_failed_after_settle",
                    extra={"state": self._state.value, "error_type": type(exc).__name__},
                )
                if self._state == SessionState.RECONNECTING:
                    continue
                return self.get_status()

            if reached == SessionState.RECONNECTING:
                continue
            if reached == SessionState.FAILED:
                await self._teardown_transport()
                raise BringUpFailure(
                    f"Autenticação recusada pelo transporte: {self._last_error or 'sem detalhe'}"
                )
            return self.get_status()

    async def _attempt_bring_up(self) -> SessionState:
        await self._start_transport()
        return await self._wait_for_state(_ATTEMPT_STOP_STATES)

    async def _handle_watchdog_timeout(self) -> None:
        logger.warning(
            "bring_up_watchdog_timeout",
            extra={
                "state": self._state.value,
                "watchdog_seconds": self._config.watchdog_seconds,
                "retry_count": self._retry_count,
            },
        )
        self._last_error = f"Bring-up excedeu {self._config.watchdog_seconds}s"
        self._transition(SessionTrigger.WATCHDOG_TIMEOUT)
        await self._teardown_transport()
        self._pairing_challenge = None

        if not self._consume_retry():
            self._transition(SessionTrigger.RETRIES_EXHAUSTED)
            raise BringUpFailure(
                "Bring-up falhou após esgotar tentativas (watchdog)",
                last_error=TimeoutError(self._last_error),
            )

        await self._sleep(self._config.timeout_retry_delay_seconds)
        self._transition(SessionTrigger.RETRY)

    async def _handle_init_error(self, exc: Exception) -> None:
        self._last_error = str(exc) or type(exc).__name__
        logger.warning(
            "transport_initialize_failed",
            extra={
                "state": self._state.value,
                "error_type": type(exc).__name__,
                "retry_count": self._retry_count,
            },
        )

        if self._state == SessionState.FAILED:
            await self._teardown_transport()
            raise BringUpFailure(
                f"Autenticação recusada pelo transporte: {self._last_error}", last_error=exc
            ) from exc

        self._transition(SessionTrigger.INIT_ERROR)
        await self._teardown_transport()
        self._pairing_challenge = None

        if not self._consume_retry():
            self._transition(SessionTrigger.RETRIES_EXHAUSTED)
            raise BringUpFailure(
                f"Bring-up falhou após esgotar tentativas: {self._last_error}", last_error=exc
            ) from exc

        await self._sleep(self._config.init_retry_delay_seconds)

    def _consume_retry(self) -> bool:
        if self._retry_count >= self._config.max_bring_up_retries:
            return False
        self._retry_count += 1
        logger.info(
            "bring_up_retry_scheduled",
            extra={
                "retry_count": self._retry_count,
                "max_retries": self._config.max_bring_up_retries,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Handle de transporte
    # ------------------------------------------------------------------

    async def _start_transport(self) -> None:
        async with self._handle_lock:
            await self._destroy_handle()
            self._generation += 1
            self._transport = self._transport_factory(self._make_sink(self._generation))
            logger.info("transport_initializing", extra={"generation": self._generation})
            await self._transport.initialize()

    async def _teardown_transport(self) -> None:
        async with self._handle_lock:
            await self._destroy_handle()

    async def _destroy_handle(self) -> None:
        """Destrói o handle atual. Deve ser chamado com _handle_lock adquirido."""
        transport, self._transport = self._transport, None
        # Eventos do handle antigo passam a ser descartados
        self._generation += 1
        if transport is None:
            return
        try:
            await transport.destroy()
        except Exception as exc:
            logger.warning(
                "transport_destroy_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )

    def _require_connected(self) -> TransportProtocol:
        if self._state != SessionState.CONNECTED or self._transport is None:
            raise NotReadyError(
                f"Sessão não está pronta (estado {self._state.value}). "
                "Leia o desafio de pareamento ou aguarde a conexão."
            )
        return self._transport

    # ------------------------------------------------------------------
    # Eventos do transporte
    # ------------------------------------------------------------------

    def _make_sink(self, generation: int) -> EventSink:
        def publish(event: TransportEvent) -> None:
            self._events.put_nowait((generation, event))

        return publish

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.get_running_loop().create_task(
                self._pump_events(), name="session-event-pump"
            )

    async def _pump_events(self) -> None:
        while True:
            generation, event = await self._events.get()
            if generation != self._generation:
                logger.debug(
                    "stale_transport_event_dropped",
                    extra={"event": str(event.type), "generation": generation},
                )
                continue
            try:
                self._apply_event(event)
            except Exception:
                logger.exception("transport_event_failed", extra={"event": str(event.type)})

    def _apply_event(self, event: TransportEvent) -> None:
        """Aplica um evento do transporte; evento desconhecido é no-op."""
        etype = event.type

        if etype == TransportEventType.PAIRING_CHALLENGE:
            self._pairing_challenge = event.payload
            if self._state == SessionState.PAIRING_REQUIRED:
                self._touch()
                logger.info("pairing_challenge_refreshed")
            elif self._try_transition(SessionTrigger.PAIRING_REQUESTED):
                logger.info("pairing_challenge_issued")

        elif etype == TransportEventType.AUTHENTICATED:
            self._try_transition(SessionTrigger.AUTHENTICATED)

        elif etype == TransportEventType.READY:
            if self._try_transition(SessionTrigger.READY):
                self._pairing_challenge = None
                self._retry_count = 0
                self._last_error = None
                logger.info("session_connected")

        elif etype == TransportEventType.AUTH_FAILURE:
            self._last_error = event.payload or "auth_failure"
            self._pairing_challenge = None
            self._try_transition(SessionTrigger.AUTH_FAILED)

        elif etype == TransportEventType.DISCONNECTED:
            self._last_error = event.payload or self._last_error
            self._pairing_challenge = None
            self._try_transition(SessionTrigger.TRANSPORT_DISCONNECTED)

        elif etype == TransportEventType.RUNTIME_ERROR:
            self._on_runtime_error(event)

        elif etype == TransportEventType.LOADING:
            logger.debug("transport_loading", extra={"progress": event.payload})

        else:
            logger.debug("transport_event_ignored", extra={"event": str(etype)})

    def _on_runtime_error(self, event: TransportEvent) -> None:
        logger.warning(
            "transport_runtime_error",
            extra={
                "state": self._state.value,
                "error_kind": str(event.error_kind),
                "error": event.payload,
            },
        )
        if self._state != SessionState.CONNECTED:
            return
        # Só erro de protocolo derruba a sessão conectada; o resto fica no log
        if event.error_kind != ErrorKind.TRANSIENT_TRANSPORT:
            return
        self._last_error = event.payload
        self._transition(SessionTrigger.RUNTIME_ERROR)
        # Bring-up em curso (se houver) trata RECONNECTING no próprio laço
        self._start_bring_up()

    # ------------------------------------------------------------------
    # FSM
    # ------------------------------------------------------------------

    def _transition(self, trigger: SessionTrigger) -> SessionState:
        ok, next_state, reason = validate_transition(self._state, trigger)
        if not ok or next_state is None:
            raise InvalidTransitionError(reason)
        self._set_state(next_state, trigger)
        return next_state

    def _try_transition(self, trigger: SessionTrigger) -> bool:
        ok, next_state, reason = validate_transition(self._state, trigger)
        if not ok or next_state is None:
            logger.info(
                "session_transition_ignored",
                extra={"state": self._state.value, "trigger": trigger.value, "reason": reason},
            )
            return False
        self._set_state(next_state, trigger)
        return True

    def _set_state(self, next_state: SessionState, trigger: SessionTrigger) -> None:
        previous = self._state
        self._state = next_state
        self._touch()
        if previous != next_state:
            logger.info(
                "session_state_changed",
                extra={
                    "from_state": previous.value,
                    "to_state": next_state.value,
                    "trigger": trigger.value,
                },
            )
        changed, self._state_changed = self._state_changed, asyncio.Event()
        changed.set()

    def _touch(self) -> None:
        self._updated_at = datetime.now(tz=UTC)

    async def _wait_for_state(self, targets: Collection[SessionState]) -> SessionState:
        while self._state not in targets:
            await self._state_changed.wait()
        return self._state


def create_session_manager(
    settings: Settings,
    transport_factory: TransportFactory,
) -> SessionManager:
    """Factory para criar SessionManager configurado conforme settings."""
    config = SessionConfig.from_settings(settings)
    logger.info(
        "session_manager_created",
        extra={
            "watchdog_seconds": config.watchdog_seconds,
            "max_bring_up_retries": config.max_bring_up_retries,
        },
    )
    return SessionManager(transport_factory, config=config)
