"""Camada de infraestrutura: adapters para serviços externos.

Este módulo exporta:
- HTTP: HttpClient, HttpClientConfig, HttpError
- Transporte: InMemoryTransport, BridgeTransport, create_transport_factory

Regras:
- Infraestrutura não decide regra de negócio
- Falhas externas viram TransportError tipado na fronteira
- Logs estruturados sem PII
"""

from zaprelay.infra.http import HttpClient, HttpClientConfig, HttpError, create_http_client
from zaprelay.infra.transport_bridge import (
    BridgeEventHub,
    BridgeTransport,
    BridgeTransportFactory,
    create_bridge_transport_factory,
)
from zaprelay.infra.transport_factory import create_transport_factory
from zaprelay.infra.transport_memory import InMemoryTransport, InMemoryTransportFactory

__all__ = [
    "HttpClient",
    "HttpClientConfig",
    "HttpError",
    "create_http_client",
    "BridgeEventHub",
    "BridgeTransport",
    "BridgeTransportFactory",
    "create_bridge_transport_factory",
    "InMemoryTransport",
    "InMemoryTransportFactory",
    "create_transport_factory",
]
