"""Testes do BridgeTransport contra um sidecar simulado (httpx.MockTransport)."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import httpx
import pytest

from zaprelay.adapters.bridge.events import BridgeEventPayload
from zaprelay.application.delivery import DeliveryService
from zaprelay.application.session_manager import SessionManager
from zaprelay.config.settings import Settings
from zaprelay.domain.delivery import DeliveryStatus
from zaprelay.domain.errors import (
    ErrorKind,
    RateLimited,
    RecipientUnreachable,
    TransientTransportError,
    UnknownTransportError,
)
from zaprelay.domain.transport_events import TransportEventType
from zaprelay.infra.http import HttpError
from zaprelay.infra.transport_bridge import (
    BridgeEventHub,
    BridgeTransportFactory,
    _parse_timestamp,
    create_bridge_transport_factory,
    map_http_error,
)
from zaprelay.infra.transport_factory import create_transport_factory
from zaprelay.infra.transport_memory import InMemoryTransportFactory

ROUTING_ID = "923001234567@c.us"


def _factory(handler) -> BridgeTransportFactory:
    settings = Settings(bridge_base_url="http://bridge.test", bridge_session_name="s1")
    return create_bridge_transport_factory(settings, http_transport=httpx.MockTransport(handler))


class TestMapHttpError:
    @pytest.mark.parametrize(
        ("status", "scoped", "expected"),
        [
            (404, True, RecipientUnreachable),
            (410, True, RecipientUnreachable),
            (404, False, UnknownTransportError),
            (429, False, RateLimited),
            (409, False, TransientTransportError),
            (503, True, TransientTransportError),
            (400, True, UnknownTransportError),
        ],
    )
    def test_status_mapping(self, status, scoped, expected):
        error = map_http_error(HttpError("x", status_code=status), recipient_scoped=scoped)
        assert type(error) is expected

    def test_connection_error_is_transient(self):
        error = map_http_error(HttpError("Erro de conexão", is_retryable=True))
        assert error.kind == ErrorKind.TRANSIENT_TRANSPORT


class TestParseTimestamp:
    def test_epoch_seconds(self):
        assert _parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize(
        "value", [1_700_000_000_000, 1_700_000_000_000.0, "1700000000000", "1700000000"]
    )
    def test_millis_and_numeric_strings(self, value):
        assert _parse_timestamp(value) == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    @pytest.mark.parametrize("value", ["ontem", "nan", float("inf"), 10**30, True, {"s": 1}])
    def test_unparseable_falls_back_to_now(self, value):
        before = datetime.now(tz=UTC)
        assert before <= _parse_timestamp(value) <= datetime.now(tz=UTC)

    def test_iso_without_tz_is_utc(self):
        assert _parse_timestamp("2024-01-02T03:04:05").tzinfo is UTC

    def test_missing_is_now(self):
        assert _parse_timestamp(None) <= datetime.now(tz=UTC)


class TestBridgeTransport:
    @pytest.mark.asyncio
    async def test_initialize_attaches_and_starts_session(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        factory = _factory(handler)
        events: list = []
        transport = factory(events.append)

        await transport.initialize()

        assert factory.events.attached
        assert (seen[0].method, seen[0].url.path) == ("POST", "/sessions/s1/start")
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_initialize_failure_detaches(self):
        factory = _factory(lambda request: httpx.Response(500))
        transport = factory(lambda event: None)

        with pytest.raises(TransientTransportError):
            await transport.initialize()

        assert not factory.events.attached
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_destroy_ignores_missing_session(self):
        factory = _factory(lambda request: httpx.Response(404))
        transport = factory(lambda event: None)
        factory.events.attach(lambda event: None)

        await transport.destroy()

        await factory.aclose()

    @pytest.mark.asyncio
    async def test_send_message_returns_receipt(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/sessions/s1/messages"
            return httpx.Response(200, json={"id": "wamid.9", "timestamp": 1_700_000_000})

        factory = _factory(handler)

        receipt = await factory(lambda event: None).send_message(ROUTING_ID, "oi")

        assert receipt.message_id == "wamid.9"
        assert receipt.timestamp == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        await factory.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "expected"),
        [(429, RateLimited), (404, RecipientUnreachable), (502, TransientTransportError)],
    )
    async def test_send_message_errors_are_typed(self, status, expected):
        factory = _factory(lambda request: httpx.Response(status))

        with pytest.raises(expected):
            await factory(lambda event: None).send_message(ROUTING_ID, "oi")

        await factory.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(200, json={}), httpx.Response(200, content=b"<html>")],
    )
    async def test_accepted_send_with_unreadable_body_still_returns_receipt(self, response):
        factory = _factory(lambda request: response)

        receipt = await factory(lambda event: None).send_message(ROUTING_ID, "oi")

        assert receipt.message_id is None
        assert receipt.timestamp.tzinfo is UTC
        await factory.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "expected"),
        [
            (httpx.Response(200, json={"registered": True}), True),
            (httpx.Response(200, json={"registered": False}), False),
            (httpx.Response(200, json={}), None),
            (httpx.Response(404), False),
        ],
    )
    async def test_resolve_address(self, response, expected):
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return response

        factory = _factory(handler)

        assert await factory(lambda event: None).resolve_address(ROUTING_ID) is expected
        assert paths == [f"/sessions/s1/contacts/{ROUTING_ID}"]
        await factory.aclose()

    @pytest.mark.asyncio
    async def test_resolve_address_server_error_raises(self):
        factory = _factory(lambda request: httpx.Response(503))

        with pytest.raises(TransientTransportError):
            await factory(lambda event: None).resolve_address(ROUTING_ID)

        await factory.aclose()


class TestDeliveryOverBridge:
    """Envio ponta a ponta: SessionManager + DeliveryService sobre o sidecar."""

    @pytest.mark.asyncio
    async def test_millisecond_receipt_is_sent_once(self, fake_sleep, wait_until):
        message_posts: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path == "/sessions/s1/messages":
                message_posts.append(request)
                return httpx.Response(200, json={"id": "wamid-1", "timestamp": 1_700_000_000_000})
            if path.startswith("/sessions/s1/contacts/"):
                return httpx.Response(200, json={"registered": True})
            return httpx.Response(200, json={})

        factory = _factory(handler)
        manager = SessionManager(factory, sleep=fake_sleep)
        bring_up = asyncio.create_task(manager.initialize())
        await wait_until(lambda: factory.events.attached)
        factory.events.dispatch(BridgeEventPayload(session="s1", event="authenticated"))
        factory.events.dispatch(BridgeEventPayload(session="s1", event="ready"))
        await bring_up
        assert manager.is_ready

        outcome = await DeliveryService(manager, sleep=fake_sleep).send("03001234567", "hi")

        assert outcome.status == DeliveryStatus.SENT
        assert outcome.attempts == 1
        assert outcome.transport_message_id == "wamid-1"
        assert outcome.timestamp == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert len(message_posts) == 1
        assert fake_sleep.calls == []
        await manager.close()
        await factory.aclose()


class TestBridgeEventHub:
    def test_dispatch_to_attached_sink(self):
        hub = BridgeEventHub("s1")
        received: list = []
        hub.attach(received.append)

        accepted = hub.dispatch(BridgeEventPayload(session="s1", event="ready"))

        assert accepted
        assert received[0].type == TransportEventType.READY

    def test_dispatch_without_sink(self):
        hub = BridgeEventHub("s1")
        assert not hub.dispatch(BridgeEventPayload(session="s1", event="ready"))

    def test_dispatch_other_session(self):
        hub = BridgeEventHub("s1")
        received: list = []
        hub.attach(received.append)

        assert not hub.dispatch(BridgeEventPayload(session="s2", event="ready"))
        assert received == []

    def test_detach_only_current_sink(self):
        hub = BridgeEventHub("s1")
        old, new = [].append, [].append
        hub.attach(new)

        hub.detach(old)
        assert hub.attached

        hub.detach(new)
        assert not hub.attached


class TestTransportFactorySelection:
    def test_memory(self):
        assert isinstance(create_transport_factory(Settings()), InMemoryTransportFactory)

    def test_bridge(self):
        settings = Settings(transport_backend="bridge", bridge_base_url="http://bridge.test")
        assert isinstance(create_transport_factory(settings), BridgeTransportFactory)

    def test_unknown(self):
        with pytest.raises(ValueError, match="desconhecido"):
            create_transport_factory(Settings(transport_backend="carrier-pigeon"))
