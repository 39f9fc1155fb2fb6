"""Estados canônicos da sessão de transporte (WhatsApp Web).

Existe exatamente uma sessão viva por processo; o estado só muda
através da tabela de transições (ver transitions.py).
"""

from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    """8 estados do ciclo de vida da sessão."""

    DISCONNECTED = "DISCONNECTED"
    """Sem handle de transporte ativo (estado inicial)."""

    INITIALIZING = "INITIALIZING"
    """Handle criado, transporte subindo."""

    PAIRING_REQUIRED = "PAIRING_REQUIRED"
    """Transporte emitiu desafio de pareamento (QR); aguardando leitura."""

    AUTHENTICATED = "AUTHENTICATED"
    """Pareamento aceito; aguardando sessão pronta."""

    CONNECTED = "CONNECTED"
    """Sessão pronta para envio."""

    RECONNECTING = "RECONNECTING"
    """Erro de protocolo/runtime com sessão conectada; recuperação em curso."""

    TIMED_OUT = "TIMED_OUT"
    """Watchdog de bring-up expirou."""

    FAILED = "FAILED"
    """Falha terminal; exige restart() explícito."""


BRING_UP_STATES = frozenset({
    SessionState.INITIALIZING,
    SessionState.PAIRING_REQUIRED,
    SessionState.AUTHENTICATED,
})
"""Estados cobertos pelo watchdog de bring-up."""

SETTLED_STATES = frozenset({
    SessionState.PAIRING_REQUIRED,
    SessionState.CONNECTED,
    SessionState.DISCONNECTED,
    SessionState.FAILED,
})
"""Estados em que initialize() devolve o controle ao chamador."""

BRING_UP_END_STATES = frozenset({
    SessionState.CONNECTED,
    SessionState.DISCONNECTED,
    SessionState.FAILED,
})
"""Estados que encerram a espera do watchdog."""
