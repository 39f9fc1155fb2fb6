"""Rotas HTTP: sessão, validação de telefone, envio e eventos do sidecar."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from zaprelay.adapters.bridge.events import BridgeEventPayload
from zaprelay.adapters.bridge.signature import verify_bridge_signature
from zaprelay.api.dependencies import (
    get_bridge_events,
    get_bulk_dispatcher,
    get_delivery_service,
    get_session_manager,
    get_settings,
)
from zaprelay.api.schemas import (
    BulkDispatchResponse,
    BulkSendRequest,
    DeliveryOutcomeResponse,
    SendMessageRequest,
    SessionStatusResponse,
    ValidatePhoneRequest,
    ValidatePhoneResponse,
)
from zaprelay.application.bulk_dispatcher import BulkDispatcher
from zaprelay.application.delivery import DeliveryService
from zaprelay.application.session_manager import SessionManager
from zaprelay.config.settings import Settings
from zaprelay.domain.delivery import DeliveryOutcome, DeliveryStatus
from zaprelay.domain.errors import BringUpFailure, ErrorKind, ValidationError
from zaprelay.domain.recipients import Recipient
from zaprelay.infra.transport_bridge import BridgeEventHub
from zaprelay.observability.logging import get_logger
from zaprelay.observability.middleware import get_correlation_id

logger = get_logger(__name__)

router = APIRouter()

_REJECTION_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RECIPIENT_UNREACHABLE: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_READY: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _outcome_http_status(outcome: DeliveryOutcome) -> int:
    if outcome.status == DeliveryStatus.SENT:
        return status.HTTP_200_OK
    if outcome.status == DeliveryStatus.FAILED:
        return status.HTTP_502_BAD_GATEWAY
    return _REJECTION_STATUS.get(outcome.last_error, status.HTTP_400_BAD_REQUEST)


def _bring_up_failed(exc: BringUpFailure, session: SessionManager) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "bring_up_failure",
            "message": str(exc),
            "correlation_id": get_correlation_id(),
            "session": SessionStatusResponse.from_status(session.get_status()).model_dump(
                mode="json"
            ),
        },
    )


@router.get("/health")
def health(
    settings: Settings = Depends(get_settings),
    session: SessionManager = Depends(get_session_manager),
) -> dict[str, str]:
    """Healthcheck simples (não depende da sessão estar pronta)."""
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.version,
        "session_state": session.state.value,
    }


# === Sessão ===


@router.post("/session/initialize")
async def initialize_session(
    session: SessionManager = Depends(get_session_manager),
) -> dict[str, Any]:
    """Sobe a sessão; retorna quando há desafio de pareamento ou conexão."""
    try:
        current = await session.initialize()
    except BringUpFailure as exc:
        raise _bring_up_failed(exc, session) from exc
    return {
        "success": True,
        "status": SessionStatusResponse.from_status(current).model_dump(mode="json"),
    }


@router.get("/session/status", response_model=SessionStatusResponse)
def session_status(session: SessionManager = Depends(get_session_manager)) -> SessionStatusResponse:
    return SessionStatusResponse.from_status(session.get_status())


@router.post("/session/disconnect", response_model=SessionStatusResponse)
async def disconnect_session(
    session: SessionManager = Depends(get_session_manager),
) -> SessionStatusResponse:
    await session.disconnect()
    return SessionStatusResponse.from_status(session.get_status())


@router.post("/session/restart")
async def restart_session(
    session: SessionManager = Depends(get_session_manager),
) -> dict[str, Any]:
    try:
        current = await session.restart()
    except BringUpFailure as exc:
        raise _bring_up_failed(exc, session) from exc
    return {
        "success": True,
        "status": SessionStatusResponse.from_status(current).model_dump(mode="json"),
    }


# === Telefone / envio ===


@router.post("/phone/validate", response_model=ValidatePhoneResponse)
def validate_phone(
    body: ValidatePhoneRequest,
    delivery: DeliveryService = Depends(get_delivery_service),
) -> ValidatePhoneResponse:
    return ValidatePhoneResponse.from_result(delivery.validate_phone_number(body.phone_number))


@router.post("/messages/send", response_model=DeliveryOutcomeResponse)
async def send_message(
    body: SendMessageRequest,
    delivery: DeliveryService = Depends(get_delivery_service),
) -> DeliveryOutcomeResponse:
    """Envio individual; status HTTP reflete o outcome."""
    outcome = await delivery.send(body.phone_number, body.message)
    response = DeliveryOutcomeResponse.from_outcome(outcome)

    http_status = _outcome_http_status(outcome)
    if http_status != status.HTTP_200_OK:
        raise HTTPException(
            status_code=http_status,
            detail={
                "error": response.error,
                "message": response.error_message,
                "correlation_id": get_correlation_id(),
                "outcome": response.model_dump(mode="json"),
            },
        )
    return response


@router.post("/messages/bulk", response_model=BulkDispatchResponse)
async def send_bulk(
    body: BulkSendRequest,
    dispatcher: BulkDispatcher = Depends(get_bulk_dispatcher),
) -> BulkDispatchResponse:
    """Envio em lote sequencial; falhas individuais vêm nos outcomes."""
    recipients = [
        Recipient(phone=item.phone_number, name=item.name, reference=item.reference)
        for item in body.recipients
    ]
    texts = {id(r): item.message for r, item in zip(recipients, body.recipients, strict=True)}

    try:
        result = await dispatcher.send_all(recipients, lambda r: texts[id(r)])
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": exc.kind.value, "message": str(exc)},
        ) from exc
    return BulkDispatchResponse.from_result(result)


# === Eventos do sidecar ===


@router.post("/webhooks/transport")
async def transport_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    events: BridgeEventHub | None = Depends(get_bridge_events),
) -> dict[str, Any]:
    """Recebe eventos do sidecar e encaminha ao handle vivo."""
    if events is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="bridge_disabled")

    raw_body = await request.body()
    signature_result = verify_bridge_signature(
        raw_body, request.headers, settings.bridge_webhook_secret
    )
    if not signature_result.valid:
        logger.warning("bridge_signature_invalid", extra={"reason": signature_result.error})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_signature")

    try:
        payload = BridgeEventPayload.model_validate(json.loads(raw_body or b"{}"))
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_event"
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_json") from exc

    accepted = events.dispatch(payload)
    return {
        "ok": True,
        "accepted": accepted,
        "event": payload.event,
        "correlation_id": get_correlation_id(),
        "signature_validated": signature_result.valid and not signature_result.skipped,
        "signature_skipped": signature_result.skipped,
    }
