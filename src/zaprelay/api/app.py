"""Fábrica da aplicação FastAPI."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from zaprelay.api.routes import router
from zaprelay.application.bulk_dispatcher import create_bulk_dispatcher
from zaprelay.application.delivery import create_delivery_service
from zaprelay.application.session_manager import create_session_manager
from zaprelay.config.settings import Settings, get_settings
from zaprelay.domain.protocols.transport import TransportFactory
from zaprelay.infra.transport_bridge import BridgeTransportFactory
from zaprelay.infra.transport_factory import create_transport_factory
from zaprelay.observability.logging import configure_logging, get_logger
from zaprelay.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Encerra sessão e cliente HTTP do sidecar no shutdown."""
    yield
    await app.state.session_manager.close()
    factory = app.state.transport_factory
    if isinstance(factory, BridgeTransportFactory):
        await factory.aclose()
    logger.info("app_shutdown_completed")


def create_app(
    settings: Settings | None = None,
    transport_factory: TransportFactory | None = None,
) -> FastAPI:
    """Cria a aplicação FastAPI.

    Args:
        settings: Configurações; se None, usa get_settings()
        transport_factory: factory de handles alternativa (testes)

    Raises:
        ValueError: configuração inválida
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name, settings.log_format)

    validation_errors = settings.validate_all()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=_lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(router)

    factory = transport_factory or create_transport_factory(settings)
    session_manager = create_session_manager(settings, factory)
    delivery_service = create_delivery_service(settings, session_manager)

    app.state.settings = settings
    app.state.transport_factory = factory
    app.state.bridge_events = (
        factory.events if isinstance(factory, BridgeTransportFactory) else None
    )
    app.state.session_manager = session_manager
    app.state.delivery_service = delivery_service
    app.state.bulk_dispatcher = create_bulk_dispatcher(settings, delivery_service)

    logger.info(
        "app_created",
        extra={
            "environment": settings.environment,
            "transport_backend": settings.transport_backend,
        },
    )
    return app


app = create_app()
