"""Seleção do backend de transporte conforme settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zaprelay.infra.transport_bridge import BridgeTransportFactory, create_bridge_transport_factory
from zaprelay.infra.transport_memory import InMemoryTransportFactory
from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    import httpx

    from zaprelay.config.settings import Settings

logger: logging.Logger = get_logger(__name__)


def create_transport_factory(
    settings: Settings,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> InMemoryTransportFactory | BridgeTransportFactory:
    """Cria a factory de handles do backend configurado.

    Args:
        settings: Configurações da aplicação
        http_transport: transport httpx alternativo (apenas testes do backend bridge)

    Raises:
        ValueError: backend desconhecido
    """
    backend = settings.transport_backend.lower()

    if backend == "bridge":
        logger.info("transport_backend_selected", extra={"backend": backend})
        return create_bridge_transport_factory(settings, http_transport=http_transport)

    if backend == "memory":
        logger.info("transport_backend_selected", extra={"backend": backend})
        return InMemoryTransportFactory()

    raise ValueError(f"TRANSPORT_BACKEND desconhecido: {settings.transport_backend}")
