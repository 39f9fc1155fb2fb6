"""Re-exports dos Protocolos de domínio para uso por Application."""

from __future__ import annotations

from zaprelay.domain.protocols.transport import (
    EventSink,
    TransportFactory,
    TransportProtocol,
)

__all__ = [
    "EventSink",
    "TransportFactory",
    "TransportProtocol",
]
