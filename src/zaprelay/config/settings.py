"""Configurações da aplicação via variáveis de ambiente.

Todas as configurações são carregadas de env vars (ou .env em dev).
Nunca hardcode secrets ou valores sensíveis.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Padrões de implantação: Paquistão, WhatsApp Web
DEFAULT_COUNTRY_CODE: str = "92"
DEFAULT_TRUNK_PREFIX: str = "0"
DEFAULT_MOBILE_LEADING_DIGIT: str = "3"
DEFAULT_ROUTING_SUFFIX: str = "@c.us"

VALID_TRANSPORT_BACKENDS = frozenset({"memory", "bridge"})


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    # Aplicação
    service_name: str = "zaprelay"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    # Transporte
    transport_backend: str = "memory"  # memory | bridge
    bridge_base_url: str | None = None  # URL do sidecar (whatsapp-web)
    bridge_session_name: str = "zaprelay-session"
    bridge_api_token: str | None = None  # Bearer token do sidecar
    bridge_webhook_secret: str | None = None  # HMAC SHA-256 dos eventos
    bridge_request_timeout_seconds: float = 60.0
    bridge_max_retries: int = 0  # Retry de conexão; retry de envio é do DeliveryService

    # Sessão (bring-up / watchdog)
    session_watchdog_seconds: float = 120.0
    session_max_bring_up_retries: int = 3
    session_init_retry_delay_seconds: float = 5.0  # Após exceção de inicialização
    session_timeout_retry_delay_seconds: float = 10.0  # Após timeout do watchdog
    session_reconnect_delay_seconds: float = 5.0  # Após erro de protocolo
    session_restart_settle_seconds: float = 5.0

    # Entrega (retry/backoff)
    delivery_max_attempts: int = 3
    delivery_inner_attempts: int = 2
    delivery_inner_retry_delay_seconds: float = 1.0
    delivery_rate_limit_backoff_seconds: float = 5.0
    delivery_transient_backoff_seconds: float = 3.0
    delivery_default_backoff_seconds: float = 2.0

    # Envio em lote
    bulk_inter_message_delay_seconds: float = 3.0
    bulk_max_batch_size: int = 500

    # Normalização de telefone
    phone_country_code: str = DEFAULT_COUNTRY_CODE
    phone_trunk_prefix: str = DEFAULT_TRUNK_PREFIX
    phone_mobile_leading_digit: str = DEFAULT_MOBILE_LEADING_DIGIT
    phone_routing_suffix: str = DEFAULT_ROUTING_SUFFIX

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")

    def validate_transport_config(self) -> list[str]:
        """Valida backend de transporte.

        Em staging/prod, o backend memory é proibido (não entrega nada).
        Retorna lista de erros (vazia = tudo OK).
        """
        errors: list[str] = []
        backend = self.transport_backend.lower()

        if backend not in VALID_TRANSPORT_BACKENDS:
            errors.append(
                f"TRANSPORT_BACKEND '{backend}' inválido. "
                f"Valores válidos: {sorted(VALID_TRANSPORT_BACKENDS)}"
            )

        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append("TRANSPORT_BACKEND=memory é proibido em staging/production")

        if backend == "bridge":
            if not self.bridge_base_url:
                errors.append("TRANSPORT_BACKEND=bridge requer BRIDGE_BASE_URL configurado")
            if self.is_production and not self.bridge_webhook_secret:
                errors.append("BRIDGE_WEBHOOK_SECRET obrigatório em production")
            if self.bridge_max_retries < 0:
                errors.append("BRIDGE_MAX_RETRIES não pode ser negativo")

        return errors

    def validate_phone_config(self) -> list[str]:
        """Valida política de normalização de telefone."""
        errors: list[str] = []
        for name in ("phone_country_code", "phone_trunk_prefix", "phone_mobile_leading_digit"):
            value = getattr(self, name)
            if not value or not value.isdigit():
                errors.append(f"{name.upper()} deve conter apenas dígitos")
        if len(self.phone_mobile_leading_digit) != 1:
            errors.append("PHONE_MOBILE_LEADING_DIGIT deve ter exatamente 1 dígito")
        if len(self.phone_country_code) + 10 > 15:
            errors.append("PHONE_COUNTRY_CODE longo demais para endereço de 15 dígitos")
        if not self.phone_routing_suffix:
            errors.append("PHONE_ROUTING_SUFFIX não pode ser vazio")
        return errors

    def validate_delivery_config(self) -> list[str]:
        """Valida orçamento de retry e limites de lote."""
        errors: list[str] = []
        if self.delivery_max_attempts < 1:
            errors.append("DELIVERY_MAX_ATTEMPTS deve ser >= 1")
        if self.delivery_inner_attempts < 1:
            errors.append("DELIVERY_INNER_ATTEMPTS deve ser >= 1")
        if self.session_max_bring_up_retries < 0:
            errors.append("SESSION_MAX_BRING_UP_RETRIES não pode ser negativo")
        if self.session_watchdog_seconds <= 0:
            errors.append("SESSION_WATCHDOG_SECONDS deve ser positivo")
        if self.bulk_max_batch_size < 1:
            errors.append("BULK_MAX_BATCH_SIZE deve ser >= 1")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações."""
        errors: list[str] = []
        errors.extend(self.validate_transport_config())
        errors.extend(self.validate_phone_config())
        errors.extend(self.validate_delivery_config())
        return errors


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings.

    A cache garante que mesmo múltiplas injeções não criam novos objetos.
    """
    return Settings()
