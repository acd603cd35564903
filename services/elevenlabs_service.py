"""
ElevenLabs Signed URL Service

Obtém signed URLs da API de Conversational AI do ElevenLabs.
A URL assinada é a credencial de uso único para abrir a perna de IA
(WebSocket) de uma chamada.
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.elevenlabs.io"
SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"


class SignedUrlError(Exception):
    """Falha ao obter signed URL (rede, HTTP != 200 ou resposta sem signed_url)."""


class ElevenLabsService:
    """Cliente HTTP para o endpoint de signed URL."""

    def __init__(
        self,
        api_key: str,
        agent_id: str,
        api_url: str = DEFAULT_API_URL,
        timeout: int = 10,
    ):
        """
        Initialize the service.

        Args:
            api_key: Chave da API (header xi-api-key)
            agent_id: ID do agente de Conversational AI
            api_url: Base URL da API
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.agent_id = agent_id
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def signed_url_endpoint(self) -> str:
        return f"{self.api_url}{SIGNED_URL_PATH}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_signed_url(self) -> str:
        """
        GET /v1/convai/conversation/get_signed_url?agent_id=...

        Returns:
            signed_url (wss://...)

        Raises:
            SignedUrlError: em qualquer falha
        """
        try:
            session = await self._get_session()
            async with session.get(
                self.signed_url_endpoint,
                params={"agent_id": self.agent_id},
                headers={"xi-api-key": self.api_key},
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error("signed_url_http_error",
                                 status=response.status,
                                 body=body[:200])
                    raise SignedUrlError(f"Failed to get signed URL: HTTP {response.status}")

                data = await response.json()

        except asyncio.TimeoutError as e:
            logger.error("signed_url_timeout", endpoint=self.signed_url_endpoint)
            raise SignedUrlError("Timed out fetching signed URL") from e
        except aiohttp.ClientError as e:
            logger.error("signed_url_client_error", error=str(e))
            raise SignedUrlError(f"Failed to get signed URL: {e}") from e

        signed_url = data.get("signed_url") if isinstance(data, dict) else None
        if not signed_url:
            logger.error("signed_url_missing_in_response")
            raise SignedUrlError("Response did not include signed_url")

        logger.debug("signed_url_fetched")
        return signed_url
