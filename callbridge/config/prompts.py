"""
Textos e listas padrão do bridge de chamadas.

Centraliza prompt/saudação padrão do agente, instruções enviadas ao
ElevenLabs durante a transferência, anúncios falados pelo Twilio e as
listas de frases que disparam a transferência para humano.

Todos os valores podem ser sobrescritos via ambiente (ver settings.py).
"""

from typing import List

# =============================================================================
# AGENTE (override de conversa)
# =============================================================================

DEFAULT_PROMPT = "you are a gary from the phone store"

DEFAULT_FIRST_MESSAGE = "hey there! how can I help you today?"

DEFAULT_USER_NAME = "User"


# =============================================================================
# TRANSFERÊNCIA
# =============================================================================

# Enviado como user_message logo após o interrupt.
# A transferência acontece mesmo que o agente ignore esta instrução.
TRANSFER_SYSTEM_INSTRUCTION = (
    "[SYSTEM_INSTRUCTION: User requested transfer to human. "
    "Say 'I'll transfer you to a human representative now. Please hold.' "
    "and then end the conversation.]"
)

TRANSFER_ANNOUNCEMENT = "Transferring you to a human representative now. Please hold."

CLOSING_ANNOUNCEMENT = "The call has ended. Thank you for your time."


# =============================================================================
# DETECÇÃO DE PEDIDO DE HUMANO
# =============================================================================

# Lista heurística. Cresceu de forma ad hoc nas revisões anteriores,
# por isso é configurável (TRANSFER_PHRASES) e não deve ser tratada
# como semanticamente fechada.
DEFAULT_TRANSFER_PHRASES: List[str] = [
    "human",
    "representative",
    "agent",
    "person",
    "speak to someone",
    "talk to someone",
    "real person",
    "transfer",
    "speak with a human",
    "talk with a human",
]

# Expressões regulares aplicadas sobre o texto já normalizado
DEFAULT_TRANSFER_PATTERNS: List[str] = [
    r"\b(speak|talk) (to|with)\b",
    r"\btransfer me\b",
    r"\bconnect me\b",
]


def get_transfer_phrases() -> List[str]:
    """Retorna cópia da lista padrão de frases de transferência."""
    return list(DEFAULT_TRANSFER_PHRASES)


def get_transfer_patterns() -> List[str]:
    """Retorna cópia da lista padrão de padrões de transferência."""
    return list(DEFAULT_TRANSFER_PATTERNS)
