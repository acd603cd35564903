"""
Twilio Service

Wrapper assíncrono sobre o SDK do Twilio (REST síncrono) e geração de
TwiML para o media stream e para a transferência para humano.

As chamadas ao SDK rodam em asyncio.to_thread para não bloquear o
event loop.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import requests
import structlog
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

logger = structlog.get_logger(__name__)

# Erros do SDK e do transporte HTTP (requests) por baixo dele
TWILIO_ERRORS = (TwilioException, requests.RequestException)

STATUS_CALLBACK_EVENTS: List[str] = ["initiated", "ringing", "answered", "completed"]


class TelephonyError(Exception):
    """Falha numa operação REST do Twilio."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.code = code


@dataclass
class CallInfo:
    """Dados de uma chamada consultada no Twilio."""
    call_sid: str
    status: Optional[str] = None
    duration: Optional[int] = None
    to: Optional[str] = None
    from_: Optional[str] = None
    answered_by: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "callSid": self.call_sid,
            "status": self.status,
            "duration": self.duration,
            "to": self.to,
            "from": self.from_,
            "answeredBy": self.answered_by,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _error_message(e: Exception) -> str:
    if isinstance(e, TwilioRestException):
        return e.msg
    return str(e) or type(e).__name__


def _wrap(e: Exception, action: str) -> TelephonyError:
    return TelephonyError(
        f"Twilio {action} failed: {_error_message(e)}",
        status=getattr(e, "status", None),
        code=getattr(e, "code", None),
    )


# =============================================================================
# TwiML
# =============================================================================

def build_twiml_url(host: str, prompt: str, first_message: str) -> str:
    """URL que o Twilio busca quando a chamada é atendida."""
    query = urlencode({"prompt": prompt, "first_message": first_message}, quote_via=quote)
    return f"https://{host}/outbound-call-twiml?{query}"


def build_status_callback_url(host: str) -> str:
    return f"https://{host}/call-status-callback"


def build_stream_twiml(host: str, prompt: str, first_message: str) -> str:
    """
    <Connect><Stream> para o WebSocket de media do bridge.

    prompt/first_message seguem como parâmetros do stream e chegam no
    evento 'start' (customParameters).
    """
    response = VoiceResponse()
    connect = response.connect()
    stream = connect.stream(url=f"wss://{host}/outbound-media-stream")
    stream.parameter(name="prompt", value=prompt)
    stream.parameter(name="first_message", value=first_message)
    return str(response)


def build_forward_twiml(
    forward_to: str,
    caller_id: str,
    announcement: str,
    closing: str,
    dial_timeout: int = 30,
) -> str:
    """Anúncio, Dial para o humano (gravado), anúncio final e Hangup."""
    response = VoiceResponse()
    response.say(announcement)
    response.dial(
        forward_to,
        caller_id=caller_id,
        timeout=dial_timeout,
        record="record-from-answer",
    )
    response.say(closing)
    response.hangup()
    return str(response)


# =============================================================================
# REST
# =============================================================================

class TwilioService:
    """Operações REST usadas pelo bridge."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: Optional[Client] = None,
    ):
        self.from_number = from_number
        self._client = client or Client(account_sid, auth_token)

    async def create_call(
        self,
        to: str,
        twiml_url: str,
        status_callback: str,
        *,
        timeout: int = 15,
        machine_detection: Optional[str] = None,
        machine_detection_timeout: Optional[int] = None,
    ) -> str:
        """
        Origina uma chamada.

        Returns:
            CallSid da nova chamada
        """
        params: Dict[str, Any] = {
            "to": to,
            "from_": self.from_number,
            "url": twiml_url,
            "status_callback": status_callback,
            "status_callback_event": STATUS_CALLBACK_EVENTS,
            "status_callback_method": "POST",
            "timeout": timeout,
        }
        if machine_detection:
            params["machine_detection"] = machine_detection
            if machine_detection_timeout is not None:
                params["machine_detection_timeout"] = machine_detection_timeout

        try:
            call = await asyncio.to_thread(self._client.calls.create, **params)
        except TWILIO_ERRORS as e:
            logger.error(
                "twilio_create_call_failed",
                to=to,
                status=getattr(e, "status", None),
                error=_error_message(e),
            )
            raise _wrap(e, "call creation") from e

        logger.info("twilio_call_created", call_sid=call.sid, to=to)
        return call.sid

    async def redirect(self, call_sid: str, twiml: str) -> None:
        """Substitui o TwiML de uma chamada em curso."""
        try:
            await asyncio.to_thread(self._client.calls(call_sid).update, twiml=twiml)
        except TWILIO_ERRORS as e:
            logger.error(
                "twilio_redirect_failed",
                call_sid=call_sid,
                status=getattr(e, "status", None),
                error=_error_message(e),
            )
            raise _wrap(e, "redirect") from e
        logger.info("twilio_call_redirected", call_sid=call_sid)

    async def end_call(self, call_sid: str) -> None:
        try:
            await asyncio.to_thread(self._client.calls(call_sid).update, status="completed")
        except TWILIO_ERRORS as e:
            logger.warning(
                "twilio_end_call_failed",
                call_sid=call_sid,
                status=getattr(e, "status", None),
                error=_error_message(e),
            )
            raise _wrap(e, "hangup") from e
        logger.info("twilio_call_ended", call_sid=call_sid)

    async def fetch_call(self, call_sid: str) -> CallInfo:
        try:
            call = await asyncio.to_thread(self._client.calls(call_sid).fetch)
        except TWILIO_ERRORS as e:
            raise _wrap(e, "fetch") from e

        return CallInfo(
            call_sid=call.sid,
            status=call.status,
            duration=_as_int(call.duration),
            to=call.to,
            from_=call.from_,
            answered_by=call.answered_by,
            start_time=call.start_time.isoformat() if call.start_time else None,
            end_time=call.end_time.isoformat() if call.end_time else None,
        )
