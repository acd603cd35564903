"""
FastAPI application factory.

O runtime (estado compartilhado do processo) é criado no lifespan e
fica em app.state.runtime; as rotas o obtêm via Depends(get_runtime).
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import HTTPConnection

from callbridge.config.settings import Settings
from callbridge.logging_config import SERVICE_VERSION
from callbridge.runtime import CallBridgeRuntime


def get_runtime(connection: HTTPConnection) -> CallBridgeRuntime:
    """Dependency: runtime do processo (HTTP e WebSocket)."""
    return connection.app.state.runtime


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[CallBridgeRuntime] = None,
) -> FastAPI:
    """
    Cria a aplicação.

    Args:
        settings: Configuração (default: Settings.from_env())
        runtime: Runtime pronto (testes); se None, é construído no lifespan
    """
    if settings is None:
        settings = runtime.settings if runtime is not None else Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or CallBridgeRuntime.build(settings)
        app.state.runtime = rt
        await rt.start()
        try:
            yield
        finally:
            await rt.stop()

    app = FastAPI(
        title="Call Bridge",
        description="Twilio media streams <-> ElevenLabs Conversational AI",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
        max_age=3600,
    )

    from . import calls, health, streams, twilio_webhooks

    app.include_router(health.router)
    app.include_router(calls.router)
    app.include_router(twilio_webhooks.router)
    app.include_router(streams.router)

    return app
