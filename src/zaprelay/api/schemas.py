"""Contratos Pydantic da API HTTP.

Campos de entrada são opcionais de propósito: telefone e texto ausentes
são rejeitados pelo DeliveryService com o mesmo motivo de um valor vazio.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from zaprelay.api.pairing_qr import render_pairing_qr
from zaprelay.application.session_manager import SessionStatus
from zaprelay.domain.delivery import BulkDispatchResult, DeliveryOutcome
from zaprelay.domain.recipients import ValidationResult


class SendMessageRequest(BaseModel):
    """Envio individual."""

    phone_number: str | None = None
    message: str | None = None


class BulkRecipientItem(BaseModel):
    """Destinatário do lote com texto já renderizado pelo chamador."""

    phone_number: str | None = None
    message: str = ""
    name: str | None = None
    reference: str | None = Field(None, max_length=128)
    """Id do registro do chamador, devolvido no outcome."""


class BulkSendRequest(BaseModel):
    recipients: list[BulkRecipientItem] = Field(default_factory=list)


class ValidatePhoneRequest(BaseModel):
    phone_number: Any = None


class SessionStatusResponse(BaseModel):
    state: str
    is_ready: bool
    pairing_challenge: str | None = None
    pairing_qr: str | None = None
    """QR do desafio como data URL SVG (token bruto se a renderização falhar)."""
    retry_count: int = 0
    last_error: str | None = None
    updated_at: datetime

    @classmethod
    def from_status(cls, status: SessionStatus) -> SessionStatusResponse:
        return cls(
            state=status.state.value,
            is_ready=status.is_ready,
            pairing_challenge=status.pairing_challenge,
            pairing_qr=render_pairing_qr(status.pairing_challenge),
            retry_count=status.retry_count,
            last_error=status.last_error,
            updated_at=status.updated_at,
        )


class DeliveryOutcomeResponse(BaseModel):
    status: str
    success: bool
    phone_number: str | None = None
    canonical_address: str | None = None
    message_id: str | None = None
    timestamp: datetime | None = None
    attempts: int = 0
    error: str | None = None
    error_message: str | None = None
    reference: str | None = None

    @classmethod
    def from_outcome(cls, outcome: DeliveryOutcome) -> DeliveryOutcomeResponse:
        return cls(
            status=outcome.status.value,
            success=outcome.is_sent,
            phone_number=outcome.raw_phone,
            canonical_address=outcome.recipient.canonical_address if outcome.recipient else None,
            message_id=outcome.transport_message_id,
            timestamp=outcome.timestamp,
            attempts=outcome.attempts,
            error=outcome.last_error.value if outcome.last_error else None,
            error_message=outcome.error_message,
            reference=outcome.reference,
        )


class BulkDispatchResponse(BaseModel):
    total: int
    sent_count: int
    failed_count: int
    outcomes: list[DeliveryOutcomeResponse]

    @classmethod
    def from_result(cls, result: BulkDispatchResult) -> BulkDispatchResponse:
        return cls(
            total=result.total,
            sent_count=result.sent_count,
            failed_count=result.failed_count,
            outcomes=[DeliveryOutcomeResponse.from_outcome(o) for o in result.outcomes],
        )


class ValidatePhoneResponse(BaseModel):
    is_valid: bool
    reason: str | None = None
    canonical_address: str | None = None
    routing_id: str | None = None

    @classmethod
    def from_result(cls, result: ValidationResult) -> ValidatePhoneResponse:
        normalized = result.normalized
        return cls(
            is_valid=result.is_valid,
            reason=result.reason,
            canonical_address=normalized.canonical_address if normalized else None,
            routing_id=normalized.routing_id if normalized else None,
        )
