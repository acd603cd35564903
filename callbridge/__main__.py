"""
Call bridge entrypoint.

Uso:
    python -m callbridge

Credenciais ausentes encerram o processo com exit code 1 antes de
abrir a porta.
"""

import logging

import uvicorn

from .config.settings import ConfigurationError, Settings
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_dir, settings.log_json)

    try:
        settings.require_complete()
    except ConfigurationError as e:
        logger.critical(str(e))
        raise SystemExit(1)

    from api.app import create_app

    logger.info(f"Starting call bridge on {settings.host}:{settings.port}")
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
