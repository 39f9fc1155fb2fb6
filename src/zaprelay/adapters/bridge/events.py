"""Conversão dos eventos do sidecar em TransportEvent.

Fronteira do adapter: nomes de evento e mensagens de erro do cliente de
chat são traduzidos aqui para tipos do domínio. O core nunca inspeciona
texto de erro.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from zaprelay.domain.errors import ErrorKind
from zaprelay.domain.transport_events import TransportEvent, TransportEventType

# Fragmentos de erro do navegador que indicam sessão de protocolo quebrada
_PROTOCOL_ERROR_MARKERS = (
    "Protocol error",
    "Session closed",
    "Target closed",
    "Execution context was destroyed",
)


class BridgeEventPayload(BaseModel):
    """Corpo do POST /webhooks/transport enviado pelo sidecar."""

    session: str
    event: str
    data: Any = None


def _as_text(data: Any, *keys: str) -> str | None:
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if value is not None:
                return str(value)
    return str(data)


def classify_runtime_error(message: str | None) -> ErrorKind:
    if message and any(marker in message for marker in _PROTOCOL_ERROR_MARKERS):
        return ErrorKind.TRANSIENT_TRANSPORT
    return ErrorKind.UNKNOWN


def to_transport_event(payload: BridgeEventPayload) -> TransportEvent:
    """Mapeia evento do sidecar; nome desconhecido vira evento no-op."""
    name = payload.event.lower()
    data = payload.data

    if name == "qr":
        return TransportEvent.pairing(_as_text(data, "qr", "code") or "")
    if name == "authenticated":
        return TransportEvent(TransportEventType.AUTHENTICATED)
    if name == "ready":
        return TransportEvent(TransportEventType.READY)
    if name == "auth_failure":
        return TransportEvent(
            TransportEventType.AUTH_FAILURE, payload=_as_text(data, "message", "reason")
        )
    if name == "disconnected":
        return TransportEvent(
            TransportEventType.DISCONNECTED, payload=_as_text(data, "reason", "message")
        )
    if name == "error":
        message = _as_text(data, "message", "error") or "unknown transport error"
        return TransportEvent.runtime_error(message, kind=classify_runtime_error(message))
    if name == "loading_screen":
        return TransportEvent(TransportEventType.LOADING, payload=_as_text(data, "percent"))
    return TransportEvent(name, payload=_as_text(data))
