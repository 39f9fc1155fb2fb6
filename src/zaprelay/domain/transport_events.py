"""Eventos publicados pelo transporte para o SessionManager."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from zaprelay.domain.errors import ErrorKind


class TransportEventType(StrEnum):
    """Eventos reconhecidos; qualquer outro é no-op."""

    PAIRING_CHALLENGE = "PAIRING_CHALLENGE"
    AUTHENTICATED = "AUTHENTICATED"
    READY = "READY"
    AUTH_FAILURE = "AUTH_FAILURE"
    DISCONNECTED = "DISCONNECTED"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    LOADING = "LOADING"


@dataclass(frozen=True, slots=True)
class TransportEvent:
    """Evento do transporte.

    payload: desafio de pareamento, motivo de desconexão ou mensagem de erro.
    error_kind: classificação do erro em RUNTIME_ERROR.
    """

    type: TransportEventType | str
    payload: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def pairing(cls, challenge: str) -> TransportEvent:
        return cls(TransportEventType.PAIRING_CHALLENGE, payload=challenge)

    @classmethod
    def runtime_error(
        cls, message: str, kind: ErrorKind = ErrorKind.TRANSIENT_TRANSPORT
    ) -> TransportEvent:
        return cls(TransportEventType.RUNTIME_ERROR, payload=message, error_kind=kind)
