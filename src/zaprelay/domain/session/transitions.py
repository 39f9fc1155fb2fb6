"""Tabela de transições da sessão de transporte.

- TRANSITIONS[(estado_atual, gatilho)] = próximo_estado
- Gatilhos "de qualquer estado" (falha de autenticação, desconexão)
  são expandidos para todos os estados
- Validação pura: sem side effects
"""

from __future__ import annotations

from zaprelay.domain.session.states import SessionState
from zaprelay.domain.session.triggers import SessionTrigger

_S = SessionState
_T = SessionTrigger

TRANSITIONS: dict[tuple[SessionState, SessionTrigger], SessionState] = {
    # === Bring-up ===
    (_S.DISCONNECTED, _T.INITIALIZE): _S.INITIALIZING,
    (_S.INITIALIZING, _T.PAIRING_REQUESTED): _S.PAIRING_REQUIRED,
    (_S.PAIRING_REQUIRED, _T.AUTHENTICATED): _S.AUTHENTICATED,
    # Sessão restaurada de credenciais salvas autentica sem QR
    (_S.INITIALIZING, _T.AUTHENTICATED): _S.AUTHENTICATED,
    (_S.AUTHENTICATED, _T.READY): _S.CONNECTED,
    # === Watchdog / retry ===
    (_S.INITIALIZING, _T.WATCHDOG_TIMEOUT): _S.TIMED_OUT,
    (_S.PAIRING_REQUIRED, _T.WATCHDOG_TIMEOUT): _S.TIMED_OUT,
    (_S.AUTHENTICATED, _T.WATCHDOG_TIMEOUT): _S.TIMED_OUT,
    (_S.TIMED_OUT, _T.RETRY): _S.INITIALIZING,
    (_S.TIMED_OUT, _T.RETRIES_EXHAUSTED): _S.FAILED,
    # Exceção ao subir o handle: volta a INITIALIZING para retry (ou FAILED)
    (_S.INITIALIZING, _T.INIT_ERROR): _S.INITIALIZING,
    (_S.PAIRING_REQUIRED, _T.INIT_ERROR): _S.INITIALIZING,
    (_S.AUTHENTICATED, _T.INIT_ERROR): _S.INITIALIZING,
    (_S.INITIALIZING, _T.RETRIES_EXHAUSTED): _S.FAILED,
    # === Recuperação de erro de runtime ===
    (_S.CONNECTED, _T.RUNTIME_ERROR): _S.RECONNECTING,
    (_S.RECONNECTING, _T.REINITIALIZE): _S.INITIALIZING,
    # === Restart operacional ===
    (_S.FAILED, _T.RESTART): _S.INITIALIZING,
    (_S.DISCONNECTED, _T.RESTART): _S.INITIALIZING,
}

for _state in SessionState:
    TRANSITIONS[(_state, _T.AUTH_FAILED)] = _S.FAILED
    TRANSITIONS[(_state, _T.TRANSPORT_DISCONNECTED)] = _S.DISCONNECTED
    TRANSITIONS[(_state, _T.DISCONNECT)] = _S.DISCONNECTED


def validate_transition(
    current_state: SessionState, trigger: SessionTrigger
) -> tuple[bool, SessionState | None, str]:
    """Valida se uma transição é permitida.

    Retorna:
    - (True, next_state, ""): transição válida
    - (False, None, motivo): transição inválida

    Nunca lança exceção; apenas valida.
    """
    next_state = TRANSITIONS.get((current_state, trigger))
    if next_state is None:
        return False, None, f"No transition from {current_state} on {trigger}"
    return True, next_state, ""
