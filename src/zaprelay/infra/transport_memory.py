"""Transporte em memória para desenvolvimento local e testes.

Não entrega nada: registra envios e permite roteirizar falhas.
Proibido em staging/production (ver Settings.validate_transport_config).
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from zaprelay.domain.delivery import TransportReceipt
from zaprelay.domain.errors import ErrorKind
from zaprelay.domain.protocols.transport import TransportProtocol
from zaprelay.domain.transport_events import TransportEvent, TransportEventType
from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    from zaprelay.domain.protocols.transport import EventSink

logger: logging.Logger = get_logger(__name__)

_challenge_counter = itertools.count(1)


@dataclass(frozen=True, slots=True)
class SentMessage:
    """Mensagem registrada pelo transporte em memória."""

    routing_id: str
    text: str
    message_id: str


class InMemoryTransport(TransportProtocol):
    """Handle de transporte fake, roteirizável.

    - restored_session=True: autentica direto (credenciais salvas), sem QR
    - fail_init=True: initialize() levanta erro
    - silent=True: initialize() não emite eventos (simula travamento)
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        restored_session: bool = False,
        fail_init: bool = False,
        silent: bool = False,
    ) -> None:
        self._sink = sink
        self._restored_session = restored_session
        self._fail_init = fail_init
        self._silent = silent
        self._send_errors: deque[Exception] = deque()
        self._unreachable: set[str] = set()
        self.sent: list[SentMessage] = []
        self.challenges: list[str] = []
        self.send_calls = 0
        self.initialized = False
        self.destroyed = False

    # --- TransportProtocol ---

    async def initialize(self) -> None:
        if self._fail_init:
            raise RuntimeError("Simulated transport initialization failure")

        self.initialized = True
        if self._silent:
            return
        if self._restored_session:
            self._emit(TransportEvent(TransportEventType.AUTHENTICATED))
            self._emit(TransportEvent(TransportEventType.READY))
            return
        self._issue_challenge()

    async def destroy(self) -> None:
        self.destroyed = True
        self.initialized = False

    async def send_message(self, routing_id: str, text: str) -> TransportReceipt:
        self.send_calls += 1
        if self._send_errors:
            raise self._send_errors.popleft()
        message_id = f"memory-{len(self.sent) + 1}"
        self.sent.append(SentMessage(routing_id=routing_id, text=text, message_id=message_id))
        return TransportReceipt(message_id=message_id, timestamp=datetime.now(tz=UTC))

    async def resolve_address(self, routing_id: str) -> bool | None:
        return routing_id not in self._unreachable

    # --- Roteirização (testes/dev) ---

    def complete_pairing(self) -> None:
        """Simula leitura do QR: emite authenticated + ready."""
        self._emit(TransportEvent(TransportEventType.AUTHENTICATED))
        self._emit(TransportEvent(TransportEventType.READY))

    def refresh_challenge(self) -> None:
        self._issue_challenge()

    def authenticate(self) -> None:
        """QR lido, mas a sessão nunca fica pronta (sem ready)."""
        self._emit(TransportEvent(TransportEventType.AUTHENTICATED))

    def fail_auth(self, reason: str = "auth rejected") -> None:
        self._emit(TransportEvent(TransportEventType.AUTH_FAILURE, payload=reason))

    def drop_connection(self, reason: str = "NAVIGATION") -> None:
        self._emit(TransportEvent(TransportEventType.DISCONNECTED, payload=reason))

    def raise_runtime_error(
        self,
        message: str = "Protocol error (Runtime.callFunctionOn)",
        kind: ErrorKind = ErrorKind.TRANSIENT_TRANSPORT,
    ) -> None:
        self._emit(TransportEvent.runtime_error(message, kind=kind))

    def script_send_errors(self, *errors: Exception) -> None:
        """Próximas chamadas a send_message levantam estes erros, em ordem."""
        self._send_errors.extend(errors)

    def mark_unreachable(self, routing_id: str) -> None:
        self._unreachable.add(routing_id)

    def _issue_challenge(self) -> None:
        challenge = f"memory-pairing-{next(_challenge_counter)}"
        self.challenges.append(challenge)
        self._emit(TransportEvent.pairing(challenge))

    def _emit(self, event: TransportEvent) -> None:
        logger.debug("memory_transport_event", extra={"event": str(event.type)})
        self._sink(event)


class InMemoryTransportFactory:
    """Factory que guarda os handles criados (o último é o ativo).

    init_failures: quantos handles seguidos falham em initialize().
    """

    def __init__(
        self,
        *,
        restored_session: bool = False,
        init_failures: int = 0,
        silent: bool = False,
    ) -> None:
        self.restored_session = restored_session
        self.init_failures = init_failures
        self.silent = silent
        self.created: list[InMemoryTransport] = []

    def __call__(self, sink: EventSink) -> InMemoryTransport:
        fail_init = self.init_failures > 0
        if fail_init:
            self.init_failures -= 1
        transport = InMemoryTransport(
            sink,
            restored_session=self.restored_session,
            fail_init=fail_init,
            silent=self.silent,
        )
        self.created.append(transport)
        return transport

    @property
    def current(self) -> InMemoryTransport:
        if not self.created:
            raise LookupError("Nenhum transporte criado ainda")
        return self.created[-1]
