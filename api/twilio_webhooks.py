"""
Twilio Webhooks.

Endpoints chamados pelo próprio Twilio:
- GET/POST /outbound-call-twiml - TwiML <Connect><Stream> quando a chamada é atendida
- POST /call-status-callback - status da chamada (initiated, ringing, answered, completed...)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from callbridge.runtime import CallBridgeRuntime
from services.twilio_service import build_stream_twiml

from .app import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["twilio"])


def _as_int(value: Optional[str]) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        return None


@router.api_route("/outbound-call-twiml", methods=["GET", "POST"])
async def outbound_call_twiml(
    request: Request,
    prompt: Optional[str] = None,
    first_message: Optional[str] = None,
    runtime: CallBridgeRuntime = Depends(get_runtime),
):
    settings = runtime.settings
    host = settings.public_host or request.headers.get("host", "")
    twiml = build_stream_twiml(
        host,
        prompt or settings.default_prompt,
        first_message or settings.default_first_message,
    )
    return Response(content=twiml, media_type="text/xml")


@router.post("/call-status-callback")
async def call_status_callback(request: Request, runtime: CallBridgeRuntime = Depends(get_runtime)):
    form = await request.form()
    call_sid = form.get("CallSid")
    call_status = form.get("CallStatus")
    answered_by = form.get("AnsweredBy") or None

    logger.info(
        f"Call status callback: {call_status}",
        extra={
            "call_sid": call_sid,
            "call_status": call_status,
            "duration": form.get("CallDuration"),
            "answered_by": answered_by,
        }
    )

    if call_sid:
        await runtime.orchestrator.handle_status_callback(
            call_sid,
            call_status,
            duration=_as_int(form.get("CallDuration")),
            answered_by=answered_by,
        )

    return {"success": True}
