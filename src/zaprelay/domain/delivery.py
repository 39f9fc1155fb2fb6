"""Outcomes de entrega (individual e em lote) e recibo do transporte.

Criados por chamada; a persistência do histórico é responsabilidade
do colaborador que chama o core.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from zaprelay.domain.errors import ErrorKind
from zaprelay.domain.recipients import NormalizedRecipient


class DeliveryStatus(StrEnum):
    SENT = "SENT"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class TransportReceipt:
    """Identificador e timestamp atribuídos pelo transporte.

    message_id None: envio aceito sem id legível na resposta.
    """

    message_id: str | None
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Resultado de um envio.

    attempts: quantidade de chamadas de envio feitas ao transporte.
    """

    status: DeliveryStatus
    raw_phone: str | None
    recipient: NormalizedRecipient | None = None
    transport_message_id: str | None = None
    timestamp: datetime | None = None
    attempts: int = 0
    last_error: ErrorKind | None = None
    error_message: str | None = None
    reference: str | None = None

    @property
    def is_sent(self) -> bool:
        return self.status == DeliveryStatus.SENT

    @classmethod
    def rejected(
        cls,
        raw_phone: str | None,
        kind: ErrorKind,
        message: str,
        recipient: NormalizedRecipient | None = None,
        attempts: int = 0,
    ) -> DeliveryOutcome:
        return cls(
            status=DeliveryStatus.REJECTED,
            raw_phone=raw_phone,
            recipient=recipient,
            attempts=attempts,
            last_error=kind,
            error_message=message,
        )


@dataclass(slots=True)
class BulkDispatchResult:
    """Agregado do envio em lote; outcomes na ordem de entrada."""

    total: int = 0
    sent_count: int = 0
    failed_count: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    def add(self, outcome: DeliveryOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.is_sent:
            self.sent_count += 1
        else:
            self.failed_count += 1
