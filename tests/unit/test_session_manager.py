"""Testes do SessionManager: bring-up, pareamento, watchdog e recuperação."""

from __future__ import annotations

import asyncio

import pytest

from zaprelay.application.session_manager import SessionConfig, SessionManager
from zaprelay.domain.errors import BringUpFailure, ErrorKind, NotReadyError
from zaprelay.domain.session import SessionState
from zaprelay.infra.transport_memory import InMemoryTransportFactory


def _manager(factory, fake_sleep, **config) -> SessionManager:
    return SessionManager(factory, config=SessionConfig(**config), sleep=fake_sleep)


async def _eventually(predicate, timeout: float = 2.0) -> None:
    """Espera em tempo real (o watchdog usa relógio de verdade)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condição não atingida")
        await asyncio.sleep(0.005)


class TestBringUp:
    @pytest.mark.asyncio
    async def test_initialize_returns_pairing_challenge(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)

        status = await manager.initialize()

        assert status.state == SessionState.PAIRING_REQUIRED
        assert status.pairing_challenge
        assert not status.is_ready
        assert len(memory_factory.created) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_pairing_completes_to_connected(self, memory_factory, fake_sleep, wait_until):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()

        memory_factory.current.complete_pairing()
        await wait_until(lambda: manager.is_ready)

        status = manager.get_status()
        assert status.state == SessionState.CONNECTED
        assert status.pairing_challenge is None
        assert status.retry_count == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_restored_session_connects_without_pairing(self, fake_sleep):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)

        status = await manager.initialize()

        assert status.state == SessionState.CONNECTED
        assert status.pairing_challenge is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_initialize_when_connected_is_noop(self, fake_sleep):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        status = await manager.initialize()

        assert status.state == SessionState.CONNECTED
        assert len(factory.created) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_concurrent_initialize_is_single_flight(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)

        first, second, third = await asyncio.gather(
            manager.initialize(), manager.initialize(), manager.initialize()
        )

        assert len(memory_factory.created) == 1
        assert first.state == second.state == third.state == SessionState.PAIRING_REQUIRED
        assert first.pairing_challenge == second.pairing_challenge
        await manager.close()

    @pytest.mark.asyncio
    async def test_new_challenge_replaces_previous(self, memory_factory, fake_sleep, wait_until):
        manager = _manager(memory_factory, fake_sleep)
        first = (await manager.initialize()).pairing_challenge

        memory_factory.current.refresh_challenge()
        await wait_until(lambda: manager.get_status().pairing_challenge != first)

        assert manager.state == SessionState.PAIRING_REQUIRED
        await manager.close()


class TestBringUpRetries:
    @pytest.mark.asyncio
    async def test_init_errors_retry_with_fixed_delay(self, fake_sleep):
        factory = InMemoryTransportFactory(init_failures=2)
        manager = _manager(factory, fake_sleep)

        status = await manager.initialize()

        assert status.state == SessionState.PAIRING_REQUIRED
        assert status.retry_count == 2
        assert fake_sleep.calls == [5.0, 5.0]
        assert len(factory.created) == 3
        assert all(t.destroyed for t in factory.created[:2])
        await manager.close()

    @pytest.mark.asyncio
    async def test_init_errors_exhaust_to_failed(self, fake_sleep):
        factory = InMemoryTransportFactory(init_failures=10)
        manager = _manager(factory, fake_sleep)

        with pytest.raises(BringUpFailure) as exc_info:
            await manager.initialize()

        assert isinstance(exc_info.value.last_error, RuntimeError)
        assert manager.state == SessionState.FAILED
        assert fake_sleep.calls == [5.0, 5.0, 5.0]
        # Tentativa inicial + 3 retries
        assert len(factory.created) == 4
        assert manager.get_status().last_error
        await manager.close()

    @pytest.mark.asyncio
    async def test_concurrent_callers_all_see_failure(self, fake_sleep):
        factory = InMemoryTransportFactory(init_failures=10)
        manager = _manager(factory, fake_sleep)

        results = await asyncio.gather(
            manager.initialize(), manager.initialize(), return_exceptions=True
        )

        assert all(isinstance(r, BringUpFailure) for r in results)
        assert len(factory.created) == 4
        await manager.close()

    @pytest.mark.asyncio
    async def test_watchdog_timeout_retries_then_fails(self, fake_sleep):
        factory = InMemoryTransportFactory(silent=True)
        manager = _manager(factory, fake_sleep, watchdog_seconds=0.02, max_bring_up_retries=1)

        with pytest.raises(BringUpFailure):
            await manager.initialize()

        assert manager.state == SessionState.FAILED
        assert fake_sleep.calls == [10.0]
        assert len(factory.created) == 2
        assert all(t.destroyed for t in factory.created)
        await manager.close()

    @pytest.mark.asyncio
    async def test_unscanned_challenge_times_out_and_repairs(self, memory_factory):
        pauses: list[tuple[float, SessionState, str | None]] = []

        async def recording_sleep(seconds: float) -> None:
            status = manager.get_status()
            pauses.append((seconds, status.state, status.pairing_challenge))
            await asyncio.sleep(0)

        manager = SessionManager(
            memory_factory,
            config=SessionConfig(watchdog_seconds=0.05, max_bring_up_retries=1),
            sleep=recording_sleep,
        )

        status = await manager.initialize()
        assert status.state == SessionState.PAIRING_REQUIRED
        first_challenge = status.pairing_challenge

        await _eventually(lambda: manager.state == SessionState.FAILED)

        # Watchdog limpa o desafio e espera 10s antes de parear de novo
        assert pauses == [(10.0, SessionState.TIMED_OUT, None)]
        assert len(memory_factory.created) == 2
        assert memory_factory.created[0].challenges == [first_challenge]
        second_challenge = memory_factory.created[1].challenges[0]
        assert second_challenge != first_challenge
        assert all(t.destroyed for t in memory_factory.created)

        final = manager.get_status()
        assert final.pairing_challenge is None
        assert final.retry_count == 1
        assert "excedeu" in final.last_error
        with pytest.raises(BringUpFailure):
            await manager.initialize()
        await manager.close()

    @pytest.mark.asyncio
    async def test_authenticated_without_ready_times_out(
        self, memory_factory, fake_sleep, wait_until
    ):
        manager = _manager(
            memory_factory, fake_sleep, watchdog_seconds=0.05, max_bring_up_retries=0
        )
        await manager.initialize()

        memory_factory.current.authenticate()
        await wait_until(lambda: manager.state == SessionState.AUTHENTICATED)
        await _eventually(lambda: manager.state == SessionState.FAILED)

        assert fake_sleep.calls == []
        assert len(memory_factory.created) == 1
        assert memory_factory.current.destroyed
        assert manager.get_status().pairing_challenge is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_initialize_in_failed_requires_restart(self, fake_sleep):
        factory = InMemoryTransportFactory(init_failures=10)
        manager = _manager(factory, fake_sleep, max_bring_up_retries=0)
        with pytest.raises(BringUpFailure):
            await manager.initialize()
        created = len(factory.created)

        with pytest.raises(BringUpFailure):
            await manager.initialize()

        assert len(factory.created) == created
        await manager.close()


class TestRuntimeEvents:
    @pytest.mark.asyncio
    async def test_auth_failure_is_terminal_until_restart(
        self, memory_factory, fake_sleep, wait_until
    ):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()

        memory_factory.current.fail_auth("bad credentials")
        await wait_until(lambda: manager.state == SessionState.FAILED)

        assert manager.get_status().last_error == "bad credentials"
        with pytest.raises(BringUpFailure):
            await manager.initialize()

        status = await manager.restart()
        assert status.state == SessionState.PAIRING_REQUIRED
        assert 5.0 in fake_sleep.calls
        await manager.close()

    @pytest.mark.asyncio
    async def test_runtime_error_reconnects(self, fake_sleep, wait_until):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()
        first = factory.current

        first.raise_runtime_error()
        await wait_until(lambda: len(factory.created) == 2 and manager.is_ready)

        assert first.destroyed
        assert fake_sleep.calls == [5.0]
        await manager.close()

    @pytest.mark.asyncio
    async def test_non_protocol_runtime_error_keeps_connection(self, fake_sleep, wait_until):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        factory.current.raise_runtime_error(
            "Evaluation failed: TypeError x", kind=ErrorKind.UNKNOWN
        )
        await wait_until(lambda: manager._events.empty())

        assert manager.state == SessionState.CONNECTED
        assert manager.get_status().last_error is None
        assert len(factory.created) == 1
        assert not factory.current.destroyed
        assert fake_sleep.calls == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_runtime_error_outside_connected_is_ignored(
        self, memory_factory, fake_sleep, wait_until
    ):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()

        memory_factory.current.raise_runtime_error()
        memory_factory.current.refresh_challenge()
        await wait_until(lambda: manager._events.empty())

        assert manager.state == SessionState.PAIRING_REQUIRED
        assert len(memory_factory.created) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_transport_disconnect_event(self, fake_sleep, wait_until):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        factory.current.drop_connection("LOGOUT")
        await wait_until(lambda: manager.state == SessionState.DISCONNECTED)

        assert manager.get_status().pairing_challenge is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_events_from_old_handle_are_dropped(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()
        old = memory_factory.current

        await manager.restart()
        old.complete_pairing()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert manager.state == SessionState.PAIRING_REQUIRED
        assert old.destroyed
        await manager.close()


class TestTeardown:
    @pytest.mark.asyncio
    async def test_disconnect_tears_down_handle(self, fake_sleep):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        await manager.disconnect()

        status = manager.get_status()
        assert status.state == SessionState.DISCONNECTED
        assert status.retry_count == 0
        assert factory.current.destroyed
        await manager.close()

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_bring_up(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()

        await manager.disconnect()

        assert manager.state == SessionState.DISCONNECTED
        assert manager._bring_up_task.done()
        await manager.close()

    @pytest.mark.asyncio
    async def test_disconnect_logs_destroy_errors(self, fake_sleep, caplog):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        async def broken_destroy() -> None:
            raise RuntimeError("browser already gone")

        factory.current.destroy = broken_destroy
        with caplog.at_level("WARNING"):
            await manager.disconnect()

        assert manager.state == SessionState.DISCONNECTED
        assert any(r.message == "transport_destroy_failed" for r in caplog.records)
        await manager.close()

    @pytest.mark.asyncio
    async def test_restart_waits_settle_delay(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep, restart_settle_seconds=5.0)
        first = (await manager.initialize()).pairing_challenge

        status = await manager.restart()

        assert fake_sleep.calls == [5.0]
        assert status.state == SessionState.PAIRING_REQUIRED
        assert status.pairing_challenge != first
        assert len(memory_factory.created) == 2
        await manager.close()


class TestSendPrimitives:
    @pytest.mark.asyncio
    async def test_send_requires_connected(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)
        await manager.initialize()

        with pytest.raises(NotReadyError):
            await manager.send_text("923001234567@c.us", "oi")
        with pytest.raises(NotReadyError):
            await manager.resolve_address("923001234567@c.us")

        assert memory_factory.current.send_calls == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_send_when_connected(self, fake_sleep):
        factory = InMemoryTransportFactory(restored_session=True)
        manager = _manager(factory, fake_sleep)
        await manager.initialize()

        receipt = await manager.send_text("923001234567@c.us", "oi")

        assert receipt.message_id
        assert factory.current.sent[0].routing_id == "923001234567@c.us"
        assert await manager.resolve_address("923001234567@c.us") is True
        await manager.close()

    def test_status_snapshot_to_dict(self, memory_factory, fake_sleep):
        manager = _manager(memory_factory, fake_sleep)

        data = manager.get_status().to_dict()

        assert data["state"] == "DISCONNECTED"
        assert data["is_ready"] is False
        assert data["pairing_challenge"] is None
        assert "updated_at" in data
