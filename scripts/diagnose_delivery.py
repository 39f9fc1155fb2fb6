#!/usr/bin/env python
"""Script de diagnóstico do fluxo de envio (backend memory).

Testa:
1. Normalização de telefones de exemplo
2. Bring-up da sessão com pareamento simulado
3. Envio individual com rate limit roteirizado
4. Envio em lote com um destinatário sem telefone

Uso (após `pip install -e .`):
    python scripts/diagnose_delivery.py
"""

import asyncio

from zaprelay.application.bulk_dispatcher import BulkDispatcher
from zaprelay.application.delivery import DeliveryService
from zaprelay.application.phone_normalizer import normalize_phone
from zaprelay.application.session_manager import SessionManager
from zaprelay.domain.errors import RateLimited
from zaprelay.domain.recipients import Recipient
from zaprelay.infra.transport_memory import InMemoryTransportFactory

SAMPLE_PHONES = ["0300-1234567", "+92 300 1234567", "3001234567", "0000", "12345"]


async def _no_wait(seconds: float) -> None:
    print(f"  (espera de {seconds:.1f}s ignorada)")


def check_normalization() -> None:
    """Mostra o resultado da normalização para cada telefone de exemplo."""
    for raw in SAMPLE_PHONES:
        result = normalize_phone(raw)
        if result.is_valid:
            print(f"✅ {raw!r} → {result.normalized.routing_id}")
        else:
            print(f"❌ {raw!r}: {result.reason}")


async def check_session(factory: InMemoryTransportFactory) -> SessionManager | None:
    """Sobe a sessão e simula a leitura do QR."""
    manager = SessionManager(factory, sleep=_no_wait)
    status = await manager.initialize()
    print(f"✅ Estado após initialize: {status.state} (QR: {status.pairing_challenge})")

    factory.current.complete_pairing()
    for _ in range(50):
        if manager.is_ready:
            break
        await asyncio.sleep(0)

    if not manager.is_ready:
        print(f"❌ ERRO: sessão não conectou (estado {manager.state})")
        await manager.close()
        return None

    print("✅ Sessão CONNECTED")
    return manager


async def check_delivery(manager: SessionManager, factory: InMemoryTransportFactory) -> None:
    delivery = DeliveryService(manager, sleep=_no_wait)

    factory.current.script_send_errors(RateLimited("simulated"))
    outcome = await delivery.send("03001234567", "Mensagem de diagnóstico")
    print(f"✅ Envio individual: {outcome.status} em {outcome.attempts} tentativa(s)")

    dispatcher = BulkDispatcher(delivery, sleep=_no_wait)
    recipients = [
        Recipient(phone="03001234567", name="Ana", reference="m-1"),
        Recipient(phone=None, name="Sem telefone", reference="m-2"),
        Recipient(phone="03451112233", name="Bilal", reference="m-3"),
    ]
    result = await dispatcher.send_all(recipients, lambda r: f"Olá {r.name}")
    print(f"✅ Lote: {result.sent_count}/{result.total} enviados")
    for item in result.outcomes:
        print(f"  - {item.reference}: {item.status} {item.error_message or ''}")


async def main() -> None:
    print("=== Normalização ===")
    check_normalization()

    print("\n=== Sessão ===")
    factory = InMemoryTransportFactory()
    manager = await check_session(factory)
    if manager is None:
        return

    print("\n=== Envio ===")
    try:
        await check_delivery(manager, factory)
    finally:
        await manager.close()


if __name__ == "__main__":
    asyncio.run(main())
