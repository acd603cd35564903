"""
Settings - Configuração do bridge Twilio ↔ ElevenLabs.

Toda configuração vem de variáveis de ambiente (Settings.from_env()).
Credenciais ausentes são a única condição fatal do processo: o
entrypoint chama require_complete() antes de subir o servidor.

Features:
- Validação com pydantic
- Defaults para todos os tempos (cache, cooldown, reaper, transferência)
- Listas de transferência configuráveis (separadas por vírgula)
"""

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .prompts import (
    DEFAULT_FIRST_MESSAGE,
    DEFAULT_PROMPT,
    get_transfer_patterns,
    get_transfer_phrases,
)


class ConfigurationError(Exception):
    """Configuração obrigatória ausente ou inválida."""


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """
    Converte string de ambiente para booleano.

    Aceita 'true'/'1'/'yes'/'t' (case-insensitive).
    """
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "t")


def _parse_list(value: Optional[str]) -> Optional[List[str]]:
    """
    Converte lista separada por vírgula.

    Ex: "human, agent,operator" -> ["human", "agent", "operator"]
    Retorna None se vazio (para cair no default).
    """
    if value is None:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


# Nome do campo -> variável de ambiente
_REQUIRED_ENV = {
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "elevenlabs_agent_id": "ELEVENLABS_AGENT_ID",
    "twilio_account_sid": "TWILIO_ACCOUNT_SID",
    "twilio_auth_token": "TWILIO_AUTH_TOKEN",
    "twilio_phone_number": "TWILIO_PHONE_NUMBER",
    "forwarding_phone_number": "FORWARDING_PHONE_NUMBER",
}

_FLOAT_ENV = {
    "signed_url_validity_seconds": "SIGNED_URL_VALIDITY_SECONDS",
    "signed_url_safety_margin_seconds": "SIGNED_URL_SAFETY_MARGIN_SECONDS",
    "signed_url_refresh_interval_seconds": "SIGNED_URL_REFRESH_INTERVAL_SECONDS",
    "signed_url_standby_delay_seconds": "SIGNED_URL_STANDBY_DELAY_SECONDS",
    "call_cooldown_seconds": "CALL_COOLDOWN_SECONDS",
    "cooldown_expiry_seconds": "COOLDOWN_EXPIRY_SECONDS",
    "call_record_retention_seconds": "CALL_RECORD_RETENTION_SECONDS",
    "reaper_interval_seconds": "REAPER_INTERVAL_SECONDS",
    "max_call_duration_seconds": "MAX_CALL_DURATION_SECONDS",
    "transfer_grace_delay_seconds": "TRANSFER_GRACE_DELAY_SECONDS",
    "transfer_forward_delay_seconds": "TRANSFER_FORWARD_DELAY_SECONDS",
}

_INT_ENV = {
    "port": "PORT",
    "forward_dial_timeout_seconds": "FORWARD_DIAL_TIMEOUT_SECONDS",
    "call_ring_timeout_seconds": "CALL_RING_TIMEOUT_SECONDS",
    "machine_detection_timeout_seconds": "MACHINE_DETECTION_TIMEOUT_SECONDS",
}


class Settings(BaseModel):
    """Configuração completa do serviço."""

    # Credenciais (obrigatórias)
    elevenlabs_api_key: str = ""
    elevenlabs_agent_id: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    forwarding_phone_number: str = ""

    # Servidor
    host: str = "0.0.0.0"
    port: int = 8080
    public_host: Optional[str] = None  # Sobrescreve o header Host nas URLs de callback
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_dir: Optional[str] = None

    # ElevenLabs
    elevenlabs_api_url: str = "https://api.elevenlabs.io"
    eager_ai_connect: bool = True  # Abre a perna de IA antes do evento 'start'

    # Cache de signed URL (segundos)
    signed_url_validity_seconds: float = 900.0
    signed_url_safety_margin_seconds: float = 60.0
    signed_url_refresh_interval_seconds: float = 600.0
    signed_url_standby_delay_seconds: float = 5.0

    # Originação
    call_cooldown_seconds: float = 60.0
    cooldown_expiry_seconds: float = 3600.0
    call_ring_timeout_seconds: int = 15
    machine_detection: str = "DetectMessageEnd"
    machine_detection_timeout_seconds: int = 10

    # Registro / reaper
    call_record_retention_seconds: float = 3600.0
    reaper_interval_seconds: float = 60.0
    max_call_duration_seconds: float = 900.0

    # Transferência
    transfer_grace_delay_seconds: float = 0.3
    transfer_forward_delay_seconds: float = 2.0
    forward_dial_timeout_seconds: int = 30
    transfer_phrases: List[str] = Field(default_factory=get_transfer_phrases)
    transfer_patterns: List[str] = Field(default_factory=get_transfer_patterns)

    # Agente
    default_prompt: str = DEFAULT_PROMPT
    default_first_message: str = DEFAULT_FIRST_MESSAGE

    model_config = {"extra": "ignore"}

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level: {v}")
        return level

    @field_validator("signed_url_refresh_interval_seconds")
    @classmethod
    def validate_refresh_interval(cls, v: float, info) -> float:
        validity = info.data.get("signed_url_validity_seconds")
        if validity is not None and v >= validity:
            raise ValueError(
                "signed_url_refresh_interval_seconds must be shorter than the validity window"
            )
        return v

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Settings":
        """
        Constrói Settings a partir do ambiente.

        Args:
            environ: Mapeamento alternativo (testes). Default: os.environ
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for field_name, env_name in _REQUIRED_ENV.items():
            values[field_name] = env.get(env_name, "")

        for field_name, env_name in {**_FLOAT_ENV, **_INT_ENV}.items():
            raw = env.get(env_name)
            if raw not in (None, ""):
                values[field_name] = raw  # pydantic converte

        if env.get("HOST"):
            values["host"] = env["HOST"]
        if env.get("PUBLIC_HOST"):
            values["public_host"] = env["PUBLIC_HOST"]
        if env.get("LOG_LEVEL"):
            values["log_level"] = env["LOG_LEVEL"]
        if env.get("LOG_DIR"):
            values["log_dir"] = env["LOG_DIR"]
        if env.get("ELEVENLABS_API_URL"):
            values["elevenlabs_api_url"] = env["ELEVENLABS_API_URL"]
        if env.get("MACHINE_DETECTION"):
            values["machine_detection"] = env["MACHINE_DETECTION"]
        if env.get("DEFAULT_PROMPT"):
            values["default_prompt"] = env["DEFAULT_PROMPT"]
        if env.get("DEFAULT_FIRST_MESSAGE"):
            values["default_first_message"] = env["DEFAULT_FIRST_MESSAGE"]

        values["log_json"] = _parse_bool(env.get("LOG_JSON"), default=False)
        values["eager_ai_connect"] = _parse_bool(env.get("EAGER_AI_CONNECT"), default=True)

        origins = _parse_list(env.get("CORS_ALLOWED_ORIGINS"))
        if origins:
            values["cors_allowed_origins"] = origins
        phrases = _parse_list(env.get("TRANSFER_PHRASES"))
        if phrases:
            values["transfer_phrases"] = phrases
        patterns = _parse_list(env.get("TRANSFER_PATTERNS"))
        if patterns:
            values["transfer_patterns"] = patterns

        return cls(**values)

    def missing_required(self) -> List[str]:
        """Lista as variáveis obrigatórias ausentes."""
        return [
            env_name
            for field_name, env_name in _REQUIRED_ENV.items()
            if not getattr(self, field_name)
        ]

    def require_complete(self) -> "Settings":
        """
        Garante que todas as credenciais estão presentes.

        Raises:
            ConfigurationError: se alguma variável obrigatória faltar
        """
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        return self
