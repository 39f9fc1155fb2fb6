"""Renderização do desafio de pareamento como QR escaneável.

O operador lê o QR pelo app do telefone; a imagem vai como data URL SVG
para ser exibida direto num <img>. Se a renderização falhar, devolve o
token bruto (o chamador ainda pode gerar o QR por conta própria).
"""

from __future__ import annotations

import logging
from functools import lru_cache

import segno

from zaprelay.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

QR_SCALE = 4


@lru_cache(maxsize=8)
def render_pairing_qr(challenge: str | None) -> str | None:
    """Data URL SVG do desafio; None sem desafio; token bruto se falhar."""
    if not challenge:
        return None
    try:
        # Micro QR não é lido pelos apps de telefone
        return segno.make(challenge, error="m", micro=False).svg_data_uri(scale=QR_SCALE)
    except ValueError as exc:
        # Inclui segno.DataOverflowError (desafio grande demais)
        logger.warning(
            "pairing_qr_render_failed",
            extra={"error_type": type(exc).__name__, "challenge_length": len(challenge)},
        )
        return challenge
