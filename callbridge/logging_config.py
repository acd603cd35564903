"""
Structured Logging Configuration.

Features:
- Logging estruturado com structlog
- Contexto por chamada (call_sid / stream_sid) via contextvars
- Log rotation opcional
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

SERVICE_NAME = "call-bridge"
SERVICE_VERSION = "1.0.0"

_STDLIB_FORMAT_JSON = (
    '{"time": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "message": "%(message)s"}'
)
_STDLIB_FORMAT_TEXT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Adiciona timestamp ISO (UTC)."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def add_service_info(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Adiciona informações do serviço."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = SERVICE_VERSION
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    json_format: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> None:
    """
    Configura logging estruturado.

    Args:
        log_level: Nível de log (DEBUG, INFO, WARNING, ERROR)
        log_dir: Diretório de logs (None = stdout apenas)
        json_format: Usar formato JSON (True para produção)
        max_bytes: Tamanho máximo do arquivo de log
        backup_count: Número de backups a manter
    """
    level = getattr(logging, log_level.upper())

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_timestamp,
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Logging padrão (módulos que usam logging.getLogger e bibliotecas)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(_STDLIB_FORMAT_JSON if json_format else _STDLIB_FORMAT_TEXT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{SERVICE_NAME}.log",
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(_STDLIB_FORMAT_JSON))
        root_logger.addHandler(file_handler)

    # Silenciar logs verbose de bibliotecas
    for noisy in ("websockets", "asyncio", "aiohttp", "twilio", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """
    Obtém logger com contexto.

    Uso:
        logger = get_logger(__name__)
        logger.info("message", key="value")
    """
    return structlog.get_logger(name)


def bind_call_context(call_sid: Optional[str] = None, stream_sid: Optional[str] = None) -> None:
    """
    Associa call_sid/stream_sid ao contexto atual.

    Cada conexão WebSocket roda na sua própria task, então o contexto
    não vaza entre chamadas.
    """
    values = {}
    if call_sid:
        values["call_sid"] = call_sid
    if stream_sid:
        values["stream_sid"] = stream_sid
    if values:
        structlog.contextvars.bind_contextvars(**values)


def clear_call_context() -> None:
    structlog.contextvars.unbind_contextvars("call_sid", "stream_sid")
