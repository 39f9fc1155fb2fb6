"""Taxonomia de erros do core de mensageria.

A classificação é tipada: o adapter de transporte converte falhas em
subclasses de TransportError com um ErrorKind, e o core faz switch
explícito sobre o kind (nunca sobre o texto da mensagem).
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Classes de erro usadas em outcomes e logs."""

    VALIDATION = "VALIDATION"
    NOT_READY = "NOT_READY"
    RECIPIENT_UNREACHABLE = "RECIPIENT_UNREACHABLE"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_TRANSPORT = "TRANSIENT_TRANSPORT"
    BRING_UP_FAILURE = "BRING_UP_FAILURE"
    UNKNOWN = "UNKNOWN"


class ZapRelayError(Exception):
    """Erro base do core."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ValidationError(ZapRelayError):
    """Telefone inválido, texto vazio ou lote fora do limite. Nunca retentado."""

    kind = ErrorKind.VALIDATION


class NotReadyError(ZapRelayError):
    """Sessão não está CONNECTED. Chamador deve tentar mais tarde."""

    kind = ErrorKind.NOT_READY


class BringUpFailure(ZapRelayError):
    """Bring-up esgotou as tentativas (ou autenticação falhou).

    Terminal até um restart() explícito.
    """

    kind = ErrorKind.BRING_UP_FAILURE

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class InvalidTransitionError(ZapRelayError):
    """Transição de estado fora da tabela (erro de programação)."""


class TransportError(ZapRelayError):
    """Falha reportada pelo adapter de transporte."""

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def is_retryable(self) -> bool:
        return self.kind not in (ErrorKind.RECIPIENT_UNREACHABLE, ErrorKind.NOT_READY)


class RecipientUnreachable(TransportError):
    """Destinatário confirmado fora do transporte (permanente)."""

    kind = ErrorKind.RECIPIENT_UNREACHABLE


class RateLimited(TransportError):
    """Transporte sinalizou rate limiting (transitório)."""

    kind = ErrorKind.RATE_LIMITED


class TransientTransportError(TransportError):
    """Erro de protocolo/runtime do transporte (transitório)."""

    kind = ErrorKind.TRANSIENT_TRANSPORT


class UnknownTransportError(TransportError):
    """Falha não classificada; retentada com backoff padrão."""

    kind = ErrorKind.UNKNOWN


def classify_error(exc: BaseException) -> ErrorKind:
    """Retorna o ErrorKind de uma exceção qualquer (UNKNOWN se não tipada)."""
    if isinstance(exc, ZapRelayError):
        return exc.kind
    return ErrorKind.UNKNOWN
