"""Contrato do transporte (capability, não protocolo de rede).

O transporte é uma caixa-preta: sobe a sessão, envia texto, verifica se
o endereço existe e publica eventos no sink recebido na construção.
Falhas devem ser convertidas em subclasses de TransportError na
fronteira do adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zaprelay.domain.delivery import TransportReceipt
    from zaprelay.domain.transport_events import TransportEvent

EventSink = Callable[["TransportEvent"], None]
"""Callback não bloqueante que enfileira eventos para o SessionManager."""


class TransportProtocol(ABC):
    """Contrato mínimo assíncrono de um handle de transporte."""

    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def destroy(self) -> None: ...

    @abstractmethod
    async def send_message(self, routing_id: str, text: str) -> TransportReceipt: ...

    @abstractmethod
    async def resolve_address(self, routing_id: str) -> bool | None: ...


TransportFactory = Callable[[EventSink], TransportProtocol]
"""Cria um novo handle ligado ao sink de eventos (um por bring-up)."""
