"""Cliente HTTP centralizado com retry, timeout e logging.

Este módulo fornece um cliente HTTP configurável para chamadas
externas (principalmente o sidecar do transporte), com:
- Retry com backoff exponencial
- Timeouts configuráveis
- Logging estruturado (sem PII)
- Injeção de headers padrão

Regras:
- Nunca logar payloads, textos ou telefones completos
- Sempre usar timeout
- Retry do cliente só cobre conexão, 429 e 5xx; retry de envio é
  do DeliveryService (BRIDGE_MAX_RETRIES padrão 0)
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from zaprelay.observability.logging import get_logger

if TYPE_CHECKING:
    from zaprelay.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

# Regex pré-compilados para sanitização de URL
_TOKEN_PATTERN = re.compile(r"(access_token|token)=[^&]+")
_LONG_DIGITS_PATTERN = re.compile(r"\d{6,}")


def _sanitize_url(url: str) -> str:
    """Remove tokens e mascara números longos (telefones) da URL para logging."""
    url = _TOKEN_PATTERN.sub(lambda m: f"{m.group(1)}=***", url)
    return _LONG_DIGITS_PATTERN.sub(lambda m: f"***{m.group()[-4:]}", url)


@dataclass
class HttpClientConfig:
    """Configuração do cliente HTTP.

    Valores padrão são seguros e conservadores.
    """

    base_url: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 2.0
    backoff_max_seconds: float = 30.0
    default_headers: dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True


class HttpError(Exception):
    """Erro de requisição HTTP sem expor informações sensíveis."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


def _is_retryable_status(status_code: int) -> bool:
    """Determina se status HTTP permite retry (429 ou 5xx)."""
    return status_code == 429 or 500 <= status_code < 600


def _calculate_backoff(
    attempt: int,
    base_seconds: float,
    max_seconds: float,
) -> float:
    """Calcula tempo de espera com backoff exponencial."""
    backoff = (2**attempt) * base_seconds
    return min(backoff, max_seconds)


def _log_request_start(method: str, url: str, attempt: int, max_r: int) -> None:
    logger.debug(
        "http_request_started",
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "attempt": attempt + 1,
            "max_retries": max_r,
        },
    )


def _log_request_success(method: str, url: str, status_code: int) -> None:
    logger.debug(
        "http_request_succeeded",
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "status_code": status_code,
        },
    )


def _log_non_retryable_error(method: str, url: str, status_code: int) -> None:
    logger.warning(
        "http_request_failed",
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "status_code": status_code,
            "retryable": False,
        },
    )


def _log_transient_error(
    msg: str,
    method: str,
    url: str,
    attempt: int,
    error: str,
) -> None:
    """Loga erro transitório (timeout, conexão)."""
    logger.warning(
        msg,
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "attempt": attempt + 1,
            "error": error,
        },
    )


def _handle_transient_exception(
    exc: Exception,
    method: str,
    url: str,
    attempt: int,
) -> HttpError:
    """Trata exceções transitórias (timeout, conexão) e retorna HttpError."""
    if isinstance(exc, httpx.TimeoutException):
        _log_transient_error("http_request_timeout", method, url, attempt, str(exc))
        return HttpError("Timeout", is_retryable=True)

    if isinstance(exc, httpx.TransportError):
        _log_transient_error("http_connection_error", method, url, attempt, str(exc))
        return HttpError("Erro de conexão", is_retryable=True)

    logger.error(
        "http_request_unexpected_error",
        extra={
            "method": method,
            "url": _sanitize_url(url),
            "error_type": type(exc).__name__,
        },
    )
    raise HttpError(f"Erro inesperado: {type(exc).__name__}") from exc


class HttpClient:
    """Cliente HTTP assíncrono com retry e logging.

    Uso típico:
        async with HttpClient(config) as client:
            response = await client.post(url, json=payload)
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpClientConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
                verify=self._config.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Executa requisição com retry automático.

        Raises:
            HttpError: status não retentável ou tentativas esgotadas
        """
        client = await self._get_client()
        last_error: HttpError | None = None
        cfg = self._config

        for attempt in range(cfg.max_retries + 1):
            _log_request_start(method, url, attempt, cfg.max_retries)

            try:
                response = await client.request(method, url, **kwargs)
                result = self._process_response(response, method, url)
                if result is not None:
                    return result
                last_error = HttpError(
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                    is_retryable=True,
                )

            except HttpError:
                raise
            except Exception as exc:
                last_error = _handle_transient_exception(exc, method, url, attempt)

            await self._wait_backoff_if_needed(attempt)

        logger.error(
            "http_retries_exhausted",
            extra={
                "method": method,
                "url": _sanitize_url(url),
                "total_attempts": cfg.max_retries + 1,
            },
        )
        raise last_error or HttpError("Falha após todos os retries")

    def _process_response(
        self,
        response: httpx.Response,
        method: str,
        url: str,
    ) -> httpx.Response | None:
        """Processa resposta: retorna se sucesso, levanta se não retentável.

        Returns:
            Response se sucesso, None se retentável
        """
        if response.is_success:
            _log_request_success(method, url, response.status_code)
            return response

        if not _is_retryable_status(response.status_code):
            _log_non_retryable_error(method, url, response.status_code)
            raise HttpError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                is_retryable=False,
            )
        return None

    async def _wait_backoff_if_needed(self, attempt: int) -> None:
        """Aguarda backoff se ainda há retries disponíveis."""
        cfg = self._config
        if attempt < cfg.max_retries:
            backoff = _calculate_backoff(
                attempt,
                cfg.backoff_base_seconds,
                cfg.backoff_max_seconds,
            )
            logger.info(
                "http_backoff",
                extra={"backoff_seconds": backoff, "next_attempt": attempt + 2},
            )
            await asyncio.sleep(backoff)

    # Métodos de conveniência

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Executa GET com retry."""
        return await self._request("GET", url, **kwargs)

    async def post(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Executa POST com retry."""
        return await self._request("POST", url, json=json, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        """Executa DELETE com retry."""
        return await self._request("DELETE", url, **kwargs)


def create_http_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpClient:
    """Factory para criar cliente HTTP do sidecar conforme settings."""
    headers = {"User-Agent": f"{settings.service_name}/{settings.version}"}
    if settings.bridge_api_token:
        headers["Authorization"] = f"Bearer {settings.bridge_api_token}"

    config = HttpClientConfig(
        base_url=(settings.bridge_base_url or "").rstrip("/"),
        timeout_seconds=float(settings.bridge_request_timeout_seconds),
        max_retries=settings.bridge_max_retries,
        default_headers=headers,
    )

    logger.info(
        "http_client_created",
        extra={
            "timeout_seconds": config.timeout_seconds,
            "max_retries": config.max_retries,
        },
    )

    return HttpClient(config, transport=transport)
