"""Transporte via sidecar HTTP (cliente de chat em navegador headless).

Responsabilidades:
- Traduzir o contrato TransportProtocol em chamadas REST ao sidecar
- Converter HttpError em subclasses tipadas de TransportError
- Encaminhar eventos recebidos no webhook ao handle vivo

Endpoints do sidecar (relativos a BRIDGE_BASE_URL):
- POST   /sessions/{name}/start
- DELETE /sessions/{name}
- POST   /sessions/{name}/messages           {"chat_id", "text"} → {"id", "timestamp"}
- GET    /sessions/{name}/contacts/{chat_id} → {"registered": bool | null}
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from zaprelay.adapters.bridge.events import BridgeEventPayload, to_transport_event
from zaprelay.domain.delivery import TransportReceipt
from zaprelay.domain.errors import (
    RateLimited,
    RecipientUnreachable,
    TransientTransportError,
    TransportError,
    UnknownTransportError,
)
from zaprelay.domain.protocols.transport import TransportProtocol
from zaprelay.infra.http import HttpClient, HttpError, create_http_client
from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    import httpx

    from zaprelay.config.settings import Settings
    from zaprelay.domain.protocols.transport import EventSink

logger: logging.Logger = get_logger(__name__)


def map_http_error(exc: HttpError, *, recipient_scoped: bool = False) -> TransportError:
    """Classifica falha HTTP do sidecar em ErrorKind (via subclasse)."""
    status = exc.status_code
    if status in (404, 410) and recipient_scoped:
        return RecipientUnreachable(f"Recipient not found on transport (HTTP {status})")
    if status == 429:
        return RateLimited("Transport rate limit reached (HTTP 429)")
    if status == 409 or (status is not None and 500 <= status < 600):
        return TransientTransportError(f"Transport unavailable (HTTP {status})")
    if status is None and exc.is_retryable:
        return TransientTransportError(f"Transport unreachable: {exc}")
    return UnknownTransportError(f"Transport request failed: {exc}")


# Acima disso o epoch está em milissegundos (Date.now() do sidecar)
_EPOCH_MILLIS_THRESHOLD = 1e12


def _parse_timestamp(value: Any) -> datetime:
    """Aceita epoch (s ou ms, número ou string numérica) ou ISO-8601.

    Total: valor ausente ou ilegível vira "agora". Roda depois que o
    sidecar já aceitou a mensagem, então nunca lança.
    """
    if value is None or value == "" or isinstance(value, bool):
        return datetime.now(tz=UTC)
    try:
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                parsed = datetime.fromisoformat(value)
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        if isinstance(value, int | float):
            seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=UTC)
    except (ValueError, OverflowError, OSError) as exc:
        logger.warning("transport_timestamp_unparsed", extra={"error": str(exc)})
        return datetime.now(tz=UTC)
    logger.warning("transport_timestamp_unparsed", extra={"value_type": type(value).__name__})
    return datetime.now(tz=UTC)


class BridgeEventHub:
    """Encaminha eventos do webhook ao sink do handle vivo.

    Só um sink fica anexado por vez (um handle vivo por processo).
    """

    def __init__(self, session_name: str) -> None:
        self._session_name = session_name
        self._sink: EventSink | None = None

    @property
    def attached(self) -> bool:
        return self._sink is not None

    def attach(self, sink: EventSink) -> None:
        self._sink = sink

    def detach(self, sink: EventSink) -> None:
        if self._sink is sink:
            self._sink = None

    def dispatch(self, payload: BridgeEventPayload) -> bool:
        """Entrega o evento; retorna False se descartado."""
        if payload.session != self._session_name:
            logger.warning("bridge_event_unknown_session", extra={"event": payload.event})
            return False
        if self._sink is None:
            logger.info("bridge_event_without_handle", extra={"event": payload.event})
            return False
        self._sink(to_transport_event(payload))
        return True


class BridgeTransport(TransportProtocol):
    """Handle de transporte ligado a uma sessão do sidecar."""

    def __init__(
        self,
        sink: EventSink,
        http_client: HttpClient,
        hub: BridgeEventHub,
        session_name: str,
    ) -> None:
        self._sink = sink
        self._http = http_client
        self._hub = hub
        self._session_path = f"/sessions/{quote(session_name, safe='')}"

    async def initialize(self) -> None:
        self._hub.attach(self._sink)
        try:
            await self._http.post(f"{self._session_path}/start", json={})
        except HttpError as exc:
            self._hub.detach(self._sink)
            raise map_http_error(exc) from exc
        logger.info("bridge_session_started")

    async def destroy(self) -> None:
        self._hub.detach(self._sink)
        try:
            await self._http.delete(self._session_path)
        except HttpError as exc:
            # Sessão já inexistente no sidecar
            if exc.status_code == 404:
                return
            raise map_http_error(exc) from exc

    async def send_message(self, routing_id: str, text: str) -> TransportReceipt:
        try:
            response = await self._http.post(
                f"{self._session_path}/messages",
                json={"chat_id": routing_id, "text": text},
            )
        except HttpError as exc:
            raise map_http_error(exc, recipient_scoped=True) from exc

        return self._receipt_from(response)

    @classmethod
    def _receipt_from(cls, response: httpx.Response) -> TransportReceipt:
        """Recibo de um envio já aceito (2xx): corpo ruim só vira log."""
        try:
            body = cls._json_body(response)
        except UnknownTransportError as exc:
            logger.warning("bridge_receipt_incomplete", extra={"error": str(exc)})
            body = {}
        message_id = body.get("id")
        if not message_id:
            logger.warning("bridge_receipt_missing_id", extra={"status_code": response.status_code})
        return TransportReceipt(
            message_id=str(message_id) if message_id else None,
            timestamp=_parse_timestamp(body.get("timestamp")),
        )

    async def resolve_address(self, routing_id: str) -> bool | None:
        try:
            response = await self._http.get(
                f"{self._session_path}/contacts/{quote(routing_id, safe='')}"
            )
        except HttpError as exc:
            error = map_http_error(exc, recipient_scoped=True)
            if isinstance(error, RecipientUnreachable):
                return False
            raise error from exc

        registered = self._json_body(response).get("registered")
        return registered if isinstance(registered, bool) else None

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise UnknownTransportError("Transport returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise UnknownTransportError("Transport returned unexpected payload")
        return body


class BridgeTransportFactory:
    """Cria handles BridgeTransport compartilhando cliente HTTP e hub."""

    def __init__(self, http_client: HttpClient, session_name: str) -> None:
        self._http = http_client
        self._session_name = session_name
        self.events = BridgeEventHub(session_name)

    def __call__(self, sink: EventSink) -> BridgeTransport:
        return BridgeTransport(sink, self._http, self.events, self._session_name)

    async def aclose(self) -> None:
        await self._http.close()


def create_bridge_transport_factory(
    settings: Settings,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> BridgeTransportFactory:
    """Factory configurada conforme settings (http_transport para testes)."""
    http_client = create_http_client(settings, transport=http_transport)
    return BridgeTransportFactory(http_client, settings.bridge_session_name)
