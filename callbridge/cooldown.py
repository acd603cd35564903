"""
CooldownTable - Limite de uma ligação por número a cada N segundos.

Evita discagens repetidas para o mesmo destino (clique duplo no
dashboard, retry agressivo de um cliente da API).
"""

import logging
import math
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CooldownTable:
    """
    Tabela número -> instante da última tentativa.

    Args:
        cooldown_seconds: Intervalo mínimo entre tentativas para o mesmo número
        expiry_seconds: Após esse tempo a entrada é descartada por purge_expired()
        clock: Fonte de tempo (injetável em testes)
    """

    def __init__(
        self,
        cooldown_seconds: float = 60.0,
        expiry_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._last_attempt: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._last_attempt)

    def remaining(self, number: str) -> int:
        """Segundos restantes de cooldown (0 se liberado)."""
        last = self._last_attempt.get(number)
        if last is None:
            return 0
        left = self.cooldown_seconds - (self._clock() - last)
        return math.ceil(left) if left > 0 else 0

    def check_and_record(self, number: str) -> Optional[int]:
        """
        Verifica o cooldown e, se liberado, registra a tentativa.

        Returns:
            None se a tentativa foi registrada, ou os segundos restantes
            (arredondados para cima) se o número ainda está em cooldown
        """
        left = self.remaining(number)
        if left > 0:
            logger.info(
                "Call attempt rejected by cooldown",
                extra={"number": number, "cooldown_remaining": left}
            )
            return left

        self._last_attempt[number] = self._clock()
        return None

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [
            number for number, last in self._last_attempt.items()
            if now - last >= self.expiry_seconds
        ]
        for number in expired:
            del self._last_attempt[number]
        return len(expired)
