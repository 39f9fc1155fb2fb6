"""Configurações centralizadas do zaprelay.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única

Uso típico:
    from zaprelay.config import get_settings
"""

from zaprelay.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
