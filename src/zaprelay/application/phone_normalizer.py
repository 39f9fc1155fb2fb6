"""Normalização e validação de telefone para endereço do transporte.

Função pura e determinística: mesma entrada, mesma saída, sem I/O.

Formatos aceitos (padrão PK: país 92, tronco 0, móvel começa com 3):
- 923001234567  → já internacional (país + 10 dígitos)
- 03001234567   → tronco + 10 dígitos (remove tronco, prefixa país)
- 3001234567    → 10 dígitos iniciando pelo dígito móvel (prefixa país)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property
from typing import TYPE_CHECKING, Any

from zaprelay.config.settings import (
    DEFAULT_COUNTRY_CODE,
    DEFAULT_MOBILE_LEADING_DIGIT,
    DEFAULT_ROUTING_SUFFIX,
    DEFAULT_TRUNK_PREFIX,
)
from zaprelay.domain.recipients import NormalizedRecipient, ValidationResult

if TYPE_CHECKING:
    from zaprelay.config.settings import Settings

NATIONAL_DIGITS = 10
MIN_DIGITS = 10
MAX_DIGITS = 15

_NON_DIGIT = re.compile(r"\D")
_ONLY_ZEROS = re.compile(r"^0+$")


@dataclass(frozen=True)
class PhoneNumberPolicy:
    """Parâmetros de país para normalização."""

    country_code: str = DEFAULT_COUNTRY_CODE
    trunk_prefix: str = DEFAULT_TRUNK_PREFIX
    mobile_leading_digit: str = DEFAULT_MOBILE_LEADING_DIGIT
    routing_suffix: str = DEFAULT_ROUTING_SUFFIX

    @cached_property
    def canonical_pattern(self) -> re.Pattern[str]:
        return re.compile(rf"^{re.escape(self.country_code)}[0-9]{{{NATIONAL_DIGITS}}}$")

    @classmethod
    def from_settings(cls, settings: Settings) -> PhoneNumberPolicy:
        return cls(
            country_code=settings.phone_country_code,
            trunk_prefix=settings.phone_trunk_prefix,
            mobile_leading_digit=settings.phone_mobile_leading_digit,
            routing_suffix=settings.phone_routing_suffix,
        )


DEFAULT_POLICY = PhoneNumberPolicy()


def _rewrite_to_canonical(digits: str, policy: PhoneNumberPolicy) -> str | ValidationResult:
    """Reescreve dígitos no formato <país><10 dígitos> ou retorna rejeição."""
    country = policy.country_code
    trunk = policy.trunk_prefix

    if digits.startswith(country):
        if len(digits) != len(country) + NATIONAL_DIGITS:
            return ValidationResult.reject("Invalid international format for country code")
        return digits

    if digits.startswith(trunk + policy.mobile_leading_digit):
        if len(digits) != len(trunk) + NATIONAL_DIGITS:
            return ValidationResult.reject("Invalid local mobile format")
        return country + digits[len(trunk):]

    if len(digits) == NATIONAL_DIGITS and digits.startswith(policy.mobile_leading_digit):
        return country + digits

    local_example = f"{trunk}{policy.mobile_leading_digit}{'X' * (NATIONAL_DIGITS - 1)}"
    return ValidationResult.reject(
        f"Unsupported phone number format. Use local mobile format ({local_example})"
    )


def normalize_phone(raw: Any, policy: PhoneNumberPolicy = DEFAULT_POLICY) -> ValidationResult:
    """Converte telefone livre em NormalizedRecipient ou motivo de rejeição."""
    if not raw or not isinstance(raw, str):
        return ValidationResult.reject("Phone number is required")

    digits = _NON_DIGIT.sub("", raw)

    if not digits:
        return ValidationResult.reject("Phone number cannot be empty")
    if _ONLY_ZEROS.match(digits):
        return ValidationResult.reject("Invalid phone number: contains only zeros")
    if len(digits) < MIN_DIGITS:
        return ValidationResult.reject("Phone number is too short")
    if len(digits) > MAX_DIGITS:
        return ValidationResult.reject("Phone number is too long")

    rewritten = _rewrite_to_canonical(digits, policy)
    if isinstance(rewritten, ValidationResult):
        return rewritten

    # Dupla checagem do formato final
    if not policy.canonical_pattern.match(rewritten):
        return ValidationResult.reject(
            "Invalid phone number format. Must be a valid mobile number"
        )

    return ValidationResult.accept(
        NormalizedRecipient(
            raw_input=raw,
            canonical_address=rewritten,
            routing_id=f"{rewritten}{policy.routing_suffix}",
            country_code=policy.country_code,
        )
    )
