from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from zaprelay.api.app import create_app
from zaprelay.config.settings import Settings, get_settings
from zaprelay.infra.transport_memory import InMemoryTransportFactory


class FakeSleep:
    """Substitui asyncio.sleep: registra a espera e só cede o loop."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


async def _wait_until(predicate: Callable[[], bool], rounds: int = 200) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condição não atingida")


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture()
def wait_until():
    """Cede o loop até o predicado ser verdadeiro (eventos passam pelo pump)."""
    return _wait_until


@pytest.fixture()
def memory_factory() -> InMemoryTransportFactory:
    return InMemoryTransportFactory()


@pytest.fixture()
def app_settings() -> Settings:
    return Settings(
        environment="test",
        transport_backend="memory",
        session_restart_settle_seconds=0,
        delivery_inner_retry_delay_seconds=0,
        delivery_rate_limit_backoff_seconds=0,
        delivery_transient_backoff_seconds=0,
        delivery_default_backoff_seconds=0,
        bulk_inter_message_delay_seconds=0,
    )


@pytest.fixture()
def client(app_settings: Settings, memory_factory: InMemoryTransportFactory):
    get_settings.cache_clear()
    app = create_app(app_settings, transport_factory=memory_factory)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def pair_session(memory_factory: InMemoryTransportFactory):
    """Simula a leitura do QR no loop do TestClient e aguarda CONNECTED."""

    def _pair(test_client: TestClient) -> None:
        manager = test_client.app.state.session_manager

        async def _run() -> None:
            memory_factory.current.complete_pairing()
            await _wait_until(lambda: manager.is_ready)

        test_client.portal.call(_run)

    return _pair
