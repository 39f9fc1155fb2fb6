"""FSM da sessão de transporte: estados, gatilhos e transições.

Exporta:
- SessionState: 8 estados canônicos
- SessionTrigger: gatilhos de operação, transporte e supervisão
- validate_transition: validador puro
"""

from zaprelay.domain.session.states import (
    BRING_UP_END_STATES,
    BRING_UP_STATES,
    SETTLED_STATES,
    SessionState,
)
from zaprelay.domain.session.transitions import TRANSITIONS, validate_transition
from zaprelay.domain.session.triggers import SessionTrigger

__all__ = [
    "SessionState",
    "SessionTrigger",
    "TRANSITIONS",
    "validate_transition",
    "BRING_UP_STATES",
    "BRING_UP_END_STATES",
    "SETTLED_STATES",
]
