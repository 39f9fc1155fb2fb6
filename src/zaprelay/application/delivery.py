"""Serviço de entrega de mensagens com retry e backoff classificados.

Responsabilidades:
- Validar texto, prontidão da sessão e telefone antes de qualquer envio
- Verificar se o destinatário existe no transporte
- Enviar com retry (externo × interno) e backoff por classe de erro
- Devolver sempre um DeliveryOutcome (nunca lança por falha de envio)

Sem PII em logs: apenas sufixo mascarado do telefone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from zaprelay.application.phone_normalizer import (
    DEFAULT_POLICY,
    PhoneNumberPolicy,
    normalize_phone,
)
from zaprelay.domain.delivery import DeliveryOutcome, DeliveryStatus
from zaprelay.domain.errors import (
    ErrorKind,
    NotReadyError,
    TransportError,
    UnknownTransportError,
)
from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    from zaprelay.application.session_manager import SessionManager, Sleep
    from zaprelay.config.settings import Settings
    from zaprelay.domain.delivery import TransportReceipt
    from zaprelay.domain.recipients import NormalizedRecipient, ValidationResult

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryPolicy:
    """Orçamento de tentativas e backoff.

    Backoff externo = base da classe de erro × número da tentativa externa.
    """

    max_attempts: int = 3
    inner_attempts: int = 2
    inner_retry_delay_seconds: float = 1.0
    rate_limit_backoff_seconds: float = 5.0
    transient_backoff_seconds: float = 3.0
    default_backoff_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> DeliveryPolicy:
        return cls(
            max_attempts=settings.delivery_max_attempts,
            inner_attempts=settings.delivery_inner_attempts,
            inner_retry_delay_seconds=settings.delivery_inner_retry_delay_seconds,
            rate_limit_backoff_seconds=settings.delivery_rate_limit_backoff_seconds,
            transient_backoff_seconds=settings.delivery_transient_backoff_seconds,
            default_backoff_seconds=settings.delivery_default_backoff_seconds,
        )

    def backoff_for(self, kind: ErrorKind, outer_attempt: int) -> float:
        if kind == ErrorKind.RATE_LIMITED:
            base = self.rate_limit_backoff_seconds
        elif kind == ErrorKind.TRANSIENT_TRANSPORT:
            base = self.transient_backoff_seconds
        else:
            base = self.default_backoff_seconds
        return base * outer_attempt


class _AbortDelivery(Exception):
    """Erro permanente no laço de envio (sai sem novas tentativas)."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class DeliveryService:
    """Envio de texto para um telefone livre via SessionManager."""

    def __init__(
        self,
        session: SessionManager,
        policy: DeliveryPolicy | None = None,
        phone_policy: PhoneNumberPolicy = DEFAULT_POLICY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session = session
        self._policy = policy or DeliveryPolicy()
        self._phone_policy = phone_policy
        self._sleep = sleep

    def validate_phone_number(self, raw: object) -> ValidationResult:
        """Normaliza telefone com a política configurada (sem I/O)."""
        return normalize_phone(raw, self._phone_policy)

    async def send(self, raw_phone: str | None, text: str | None) -> DeliveryOutcome:
        """Envia texto e retorna o outcome (SENT, REJECTED ou FAILED)."""
        if not text or not text.strip():
            return DeliveryOutcome.rejected(
                raw_phone, ErrorKind.VALIDATION, "Message text cannot be empty"
            )

        if not self._session.is_ready:
            logger.info("delivery_rejected_not_ready", extra={"state": self._session.state.value})
            return DeliveryOutcome.rejected(
                raw_phone,
                ErrorKind.NOT_READY,
                "Transport session is not ready. Complete pairing and try again.",
            )

        validation = self.validate_phone_number(raw_phone)
        if not validation.is_valid or validation.normalized is None:
            return DeliveryOutcome.rejected(
                raw_phone, ErrorKind.VALIDATION, validation.reason or "Invalid phone number"
            )

        recipient = validation.normalized
        unreachable = await self._check_registered(recipient)
        if unreachable is not None:
            return unreachable

        return await self._send_with_retry(recipient, text)

    async def _check_registered(self, recipient: NormalizedRecipient) -> DeliveryOutcome | None:
        """Retorna outcome REJECTED se o transporte confirmar que o número não existe."""
        try:
            registered = await self._session.resolve_address(recipient.routing_id)
        except NotReadyError as exc:
            return DeliveryOutcome.rejected(
                recipient.raw_input, ErrorKind.NOT_READY, str(exc), recipient=recipient
            )
        except TransportError as exc:
            # Resposta não conclusiva: o próprio envio classifica
            logger.info(
                "recipient_resolve_inconclusive",
                extra={"recipient": recipient.masked, "error_kind": str(exc.kind)},
            )
            return None

        if registered is False:
            logger.info("recipient_not_registered", extra={"recipient": recipient.masked})
            return DeliveryOutcome.rejected(
                recipient.raw_input,
                ErrorKind.RECIPIENT_UNREACHABLE,
                f"Number {recipient.canonical_address} is not registered on the transport",
                recipient=recipient,
                attempts=1,
            )
        return None

    async def _send_with_retry(
        self, recipient: NormalizedRecipient, text: str
    ) -> DeliveryOutcome:
        policy = self._policy
        attempts = 0
        last_error: TransportError | None = None

        for outer in range(1, policy.max_attempts + 1):
            for inner in range(1, policy.inner_attempts + 1):
                attempts += 1
                try:
                    receipt = await self._send_once(recipient, text)
                except _AbortDelivery as abort:
                    logger.warning(
                        "delivery_aborted",
                        extra={
                            "recipient": recipient.masked,
                            "error_kind": str(abort.kind),
                            "attempts": attempts,
                        },
                    )
                    return DeliveryOutcome.rejected(
                        recipient.raw_input,
                        abort.kind,
                        str(abort),
                        recipient=recipient,
                        attempts=attempts,
                    )
                except TransportError as exc:
                    last_error = exc
                    logger.warning(
                        "delivery_attempt_failed",
                        extra={
                            "recipient": recipient.masked,
                            "error_kind": str(exc.kind),
                            "outer_attempt": outer,
                            "inner_attempt": inner,
                        },
                    )
                    if inner < policy.inner_attempts:
                        await self._sleep(policy.inner_retry_delay_seconds * inner)
                    continue

                logger.info(
                    "message_delivered",
                    extra={
                        "recipient": recipient.masked,
                        "message_id": receipt.message_id,
                        "attempts": attempts,
                    },
                )
                return DeliveryOutcome(
                    status=DeliveryStatus.SENT,
                    raw_phone=recipient.raw_input,
                    recipient=recipient,
                    transport_message_id=receipt.message_id,
                    timestamp=receipt.timestamp,
                    attempts=attempts,
                )

            if outer < policy.max_attempts and last_error is not None:
                backoff = policy.backoff_for(last_error.kind, outer)
                logger.info(
                    "delivery_backoff",
                    extra={
                        "backoff_seconds": backoff,
                        "error_kind": str(last_error.kind),
                        "next_attempt": outer + 1,
                    },
                )
                await self._sleep(backoff)

        kind = last_error.kind if last_error is not None else ErrorKind.UNKNOWN
        message = str(last_error) if last_error is not None else "Delivery failed"
        logger.error(
            "delivery_exhausted",
            extra={"recipient": recipient.masked, "error_kind": str(kind), "attempts": attempts},
        )
        return DeliveryOutcome(
            status=DeliveryStatus.FAILED,
            raw_phone=recipient.raw_input,
            recipient=recipient,
            attempts=attempts,
            last_error=kind,
            error_message=f"Failed after {policy.max_attempts} attempts: {message}",
        )

    async def _send_once(self, recipient: NormalizedRecipient, text: str) -> TransportReceipt:
        """Uma chamada ao transporte; erros permanentes viram _AbortDelivery."""
        try:
            return await self._session.send_text(recipient.routing_id, text)
        except NotReadyError as exc:
            raise _AbortDelivery(ErrorKind.NOT_READY, str(exc)) from exc
        except TransportError as exc:
            if exc.is_retryable:
                raise
            raise _AbortDelivery(exc.kind, str(exc)) from exc
        except Exception as exc:
            logger.exception(
                "transport_send_unexpected_error",
                extra={"recipient": recipient.masked, "error_type": type(exc).__name__},
            )
            raise UnknownTransportError(f"{type(exc).__name__}: {exc}") from exc


def create_delivery_service(settings: Settings, session: SessionManager) -> DeliveryService:
    """Factory para criar DeliveryService configurado conforme settings."""
    return DeliveryService(
        session,
        policy=DeliveryPolicy.from_settings(settings),
        phone_policy=PhoneNumberPolicy.from_settings(settings),
    )
