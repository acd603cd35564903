"""
Transfer Detector

Decide se a fala transcrita do chamador é um pedido para falar com um
humano.

Heurística: substring contra uma lista de frases, depois padrões
regex. Falsos positivos ("talk to you later") e falsos negativos são
conhecidos; a lista é configurável (TRANSFER_PHRASES/TRANSFER_PATTERNS).
"""

import logging
import re
from typing import Iterable, List, Optional, Pattern

from ..config.prompts import get_transfer_patterns, get_transfer_phrases

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    """Minúsculas, sem pontuação, espaços colapsados. Não-texto vira ""."""
    if not isinstance(text, str) or not text:
        return ""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


class TransferDetector:
    """Detecta pedidos de transferência para humano."""

    def __init__(
        self,
        phrases: Optional[Iterable[str]] = None,
        patterns: Optional[Iterable[str]] = None,
    ):
        source_phrases = get_transfer_phrases() if phrases is None else phrases
        source_patterns = get_transfer_patterns() if patterns is None else patterns

        self.phrases: List[str] = [p for p in (normalize(x) for x in source_phrases) if p]
        self.patterns: List[Pattern[str]] = [re.compile(p) for p in source_patterns if p]

    def match(self, text: Optional[str]) -> Optional[str]:
        """
        Retorna a frase/padrão que casou, ou None.

        Texto vazio ou None nunca casa.
        """
        normalized = normalize(text)
        if not normalized:
            return None

        for phrase in self.phrases:
            if phrase in normalized:
                return phrase

        for pattern in self.patterns:
            if pattern.search(normalized):
                return pattern.pattern

        return None

    def wants_human(self, text: Optional[str]) -> bool:
        matched = self.match(text)
        if matched:
            logger.info("Transfer request detected", extra={"matched": matched})
        return matched is not None


_default_detector: Optional[TransferDetector] = None


def wants_human(text: Optional[str]) -> bool:
    """Atalho com a configuração padrão."""
    global _default_detector
    if _default_detector is None:
        _default_detector = TransferDetector()
    return _default_detector.wants_human(text)
