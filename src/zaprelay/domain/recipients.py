"""Tipos de destinatário: entrada bruta, endereço normalizado e validação."""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class NormalizedRecipient:
    """Destinatário validado.

    canonical_address: código do país + 10 dígitos nacionais.
    routing_id: endereço do transporte derivado do canônico (ex.: 923001234567@c.us).
    """

    raw_input: str
    canonical_address: str
    routing_id: str
    country_code: str

    def __post_init__(self) -> None:
        pattern = rf"^{re.escape(self.country_code)}[0-9]{{10}}$"
        if not re.fullmatch(pattern, self.canonical_address):
            raise ValueError("canonical_address deve ser código do país + 10 dígitos")
        if not self.routing_id.startswith(self.canonical_address):
            raise ValueError("routing_id deve derivar do canonical_address")

    @property
    def masked(self) -> str:
        """Últimos 4 dígitos, para logs sem PII."""
        return f"***{self.canonical_address[-4:]}"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Resultado da validação de telefone."""

    is_valid: bool
    reason: str | None = None
    normalized: NormalizedRecipient | None = None

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(is_valid=False, reason=reason)

    @classmethod
    def accept(cls, normalized: NormalizedRecipient) -> ValidationResult:
        return cls(is_valid=True, normalized=normalized)


@dataclass(frozen=True, slots=True)
class Recipient:
    """Entrada do envio em lote.

    reference: id do registro do chamador (cliente/membro), devolvido no outcome.
    """

    phone: str | None
    name: str | None = None
    reference: str | None = None

    @property
    def has_usable_phone(self) -> bool:
        return isinstance(self.phone, str) and bool(self.phone.strip())
