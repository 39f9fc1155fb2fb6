"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Request

from zaprelay.application.bulk_dispatcher import BulkDispatcher
from zaprelay.application.delivery import DeliveryService
from zaprelay.application.session_manager import SessionManager
from zaprelay.config.settings import Settings
from zaprelay.infra.transport_bridge import BridgeEventHub


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_session_manager(request: Request) -> SessionManager:
    """Retorna o SessionManager único do processo."""

    return request.app.state.session_manager


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery_service


def get_bulk_dispatcher(request: Request) -> BulkDispatcher:
    return request.app.state.bulk_dispatcher


def get_bridge_events(request: Request) -> BridgeEventHub | None:
    """Hub de eventos do sidecar (None quando o backend não é bridge)."""
    return request.app.state.bridge_events
