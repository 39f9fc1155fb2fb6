"""Gatilhos que disparam transições de estado da sessão."""

from __future__ import annotations

from enum import StrEnum


class SessionTrigger(StrEnum):
    """Gatilhos internos (operações) e externos (eventos do transporte)."""

    # === Operações ===
    INITIALIZE = "INITIALIZE"
    RESTART = "RESTART"
    DISCONNECT = "DISCONNECT"

    # === Eventos do transporte ===
    PAIRING_REQUESTED = "PAIRING_REQUESTED"
    AUTHENTICATED = "AUTHENTICATED"
    READY = "READY"
    AUTH_FAILED = "AUTH_FAILED"
    TRANSPORT_DISCONNECTED = "TRANSPORT_DISCONNECTED"
    RUNTIME_ERROR = "RUNTIME_ERROR"

    # === Supervisão do bring-up ===
    WATCHDOG_TIMEOUT = "WATCHDOG_TIMEOUT"
    INIT_ERROR = "INIT_ERROR"
    RETRY = "RETRY"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"
    REINITIALIZE = "REINITIALIZE"
