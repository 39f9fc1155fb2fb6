"""Envio em lote sequencial com espaçamento fixo entre mensagens.

- Ordem de entrada preservada, um outcome por destinatário
- Falha individual nunca aborta o lote
- Espera fixa após cada envio que chegou ao transporte (exceto o último)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from zaprelay.domain.delivery import BulkDispatchResult, DeliveryOutcome, DeliveryStatus
from zaprelay.domain.errors import ErrorKind, ValidationError, classify_error
from zaprelay.observability.logging import get_logger
from zaprelay.observability.timing import timed

if TYPE_CHECKING:
    from zaprelay.application.delivery import DeliveryService
    from zaprelay.application.session_manager import Sleep
    from zaprelay.config.settings import Settings
    from zaprelay.domain.recipients import Recipient

logger: logging.Logger = get_logger(__name__)

MessageFor = Callable[["Recipient"], str]


class BulkDispatcher:
    """Itera destinatários chamando DeliveryService.send em sequência."""

    def __init__(
        self,
        delivery: DeliveryService,
        inter_message_delay_seconds: float = 3.0,
        max_batch_size: int = 500,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._delivery = delivery
        self._delay = inter_message_delay_seconds
        self._max_batch_size = max_batch_size
        self._sleep = sleep

    async def send_all(
        self,
        recipients: Sequence[Recipient],
        message_for: MessageFor,
    ) -> BulkDispatchResult:
        """Envia para todos os destinatários e agrega os outcomes.

        Raises:
            ValidationError: lote maior que o limite configurado.
        """
        if len(recipients) > self._max_batch_size:
            raise ValidationError(
                f"Batch too large: {len(recipients)} recipients (max {self._max_batch_size})"
            )

        result = BulkDispatchResult(total=len(recipients))
        last_index = len(recipients) - 1

        with timed("bulk_dispatch", total=result.total):
            for index, recipient in enumerate(recipients):
                outcome = await self._dispatch_one(recipient, message_for)
                result.add(outcome)

                if outcome.attempts > 0 and index < last_index:
                    await self._sleep(self._delay)

        logger.info(
            "bulk_dispatch_completed",
            extra={
                "total": result.total,
                "sent_count": result.sent_count,
                "failed_count": result.failed_count,
            },
        )
        return result

    async def _dispatch_one(self, recipient: Recipient, message_for: MessageFor) -> DeliveryOutcome:
        if not recipient.has_usable_phone:
            logger.info("bulk_recipient_skipped", extra={"reference": recipient.reference})
            return DeliveryOutcome(
                status=DeliveryStatus.REJECTED,
                raw_phone=recipient.phone,
                last_error=ErrorKind.VALIDATION,
                error_message="No phone number",
                reference=recipient.reference,
            )

        try:
            text = message_for(recipient)
        except Exception as exc:
            kind = classify_error(exc)
            logger.warning(
                "bulk_message_render_failed",
                extra={
                    "reference": recipient.reference,
                    "error_type": type(exc).__name__,
                    "error_kind": str(kind),
                },
            )
            # ValidationError do montador recusa o destinatário; o resto é falha
            rejected = kind == ErrorKind.VALIDATION
            return DeliveryOutcome(
                status=DeliveryStatus.REJECTED if rejected else DeliveryStatus.FAILED,
                raw_phone=recipient.phone,
                last_error=kind,
                error_message=f"Could not build message: {exc}",
                reference=recipient.reference,
            )

        outcome = await self._delivery.send(recipient.phone, text)
        return _with_reference(outcome, recipient.reference)


def _with_reference(outcome: DeliveryOutcome, reference: str | None) -> DeliveryOutcome:
    if reference is None:
        return outcome
    return replace(outcome, reference=reference)


def create_bulk_dispatcher(settings: Settings, delivery: DeliveryService) -> BulkDispatcher:
    """Factory para criar BulkDispatcher configurado conforme settings."""
    return BulkDispatcher(
        delivery,
        inter_message_delay_seconds=settings.bulk_inter_message_delay_seconds,
        max_batch_size=settings.bulk_max_batch_size,
    )
