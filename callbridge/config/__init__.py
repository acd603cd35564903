"""
Config module do call bridge.

Centraliza configurações de ambiente, prompts e regras de transferência.
"""

from .prompts import (
    CLOSING_ANNOUNCEMENT,
    DEFAULT_FIRST_MESSAGE,
    DEFAULT_PROMPT,
    TRANSFER_ANNOUNCEMENT,
    TRANSFER_SYSTEM_INSTRUCTION,
    get_transfer_patterns,
    get_transfer_phrases,
)
from .settings import ConfigurationError, Settings

__all__ = [
    "Settings",
    "ConfigurationError",
    "DEFAULT_PROMPT",
    "DEFAULT_FIRST_MESSAGE",
    "TRANSFER_SYSTEM_INSTRUCTION",
    "TRANSFER_ANNOUNCEMENT",
    "CLOSING_ANNOUNCEMENT",
    "get_transfer_phrases",
    "get_transfer_patterns",
]
