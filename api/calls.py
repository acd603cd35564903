"""
Calls API - Originação e ações manuais sobre chamadas.

Endpoints:
- POST /outbound-call - Originar chamada (cooldown + detecção de secretária)
- POST /proxy-outbound-call - Originar chamada sem cooldown/AMD
- POST /forward-call/{call_sid} - Transferir para humano
- GET /call-status/{call_sid} - Status (registro local ou Twilio)
- POST /end-call/{call_sid} - Encerrar chamada
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from callbridge.handlers.forwarding import ForwardingError, ForwardingRefusedError
from callbridge.orchestrator import CallRateLimitedError
from callbridge.runtime import CallBridgeRuntime
from services.twilio_service import TelephonyError

from .app import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calls"])


# =============================================================================
# Request/Response Models
# =============================================================================

class OutboundCallRequest(BaseModel):
    """Request para originar chamada."""
    number: Optional[str] = Field(None, description="Número de destino (E.164)")
    prompt: Optional[str] = Field(None, description="Prompt do agente para esta chamada")
    first_message: Optional[str] = Field(None, description="Primeira fala do agente")

    model_config = {"str_strip_whitespace": True}


class OutboundCallResponse(BaseModel):
    """Response de originação."""
    success: bool
    message: str = ""
    callSid: Optional[str] = None


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error, **extra}
    return JSONResponse(status_code=status_code, content=body)


# =============================================================================
# Endpoints
# =============================================================================

async def _originate(
    body: OutboundCallRequest,
    request: Request,
    runtime: CallBridgeRuntime,
    *,
    enforce_cooldown: bool,
):
    if not body.number:
        return _error(400, "Phone number is required")

    try:
        record = await runtime.orchestrator.start_call(
            body.number,
            body.prompt,
            body.first_message,
            request.headers.get("host"),
            enforce_cooldown=enforce_cooldown,
            machine_detection=enforce_cooldown,
        )
    except CallRateLimitedError as e:
        return _error(
            429,
            "Rate limited. Please wait before trying to call this number again.",
            cooldownRemaining=e.cooldown_remaining,
        )
    except ValueError as e:
        return _error(400, str(e))
    except TelephonyError as e:
        logger.error(f"Error initiating outbound call: {e}")
        return _error(500, f"Failed to initiate call: {e}")

    return OutboundCallResponse(success=True, message="Call initiated", callSid=record.call_sid)


@router.post("/outbound-call", response_model=OutboundCallResponse)
async def outbound_call(
    body: OutboundCallRequest,
    request: Request,
    runtime: CallBridgeRuntime = Depends(get_runtime),
):
    """Origina chamada com cooldown por número e detecção de secretária eletrônica."""
    return await _originate(body, request, runtime, enforce_cooldown=True)


@router.post("/proxy-outbound-call", response_model=OutboundCallResponse)
async def proxy_outbound_call(
    body: OutboundCallRequest,
    request: Request,
    runtime: CallBridgeRuntime = Depends(get_runtime),
):
    """Origina chamada sem cooldown e sem AMD (chamadas encaminhadas por outro serviço)."""
    return await _originate(body, request, runtime, enforce_cooldown=False)


@router.post("/forward-call/{call_sid}")
async def forward_call(call_sid: str, runtime: CallBridgeRuntime = Depends(get_runtime)):
    try:
        result = await runtime.orchestrator.forward_call(call_sid)
    except ForwardingRefusedError as e:
        return _error(409, str(e))
    except ForwardingError as e:
        logger.error(f"Error forwarding call {call_sid}: {e}")
        return _error(500, "Failed to forward call")

    return {
        "success": True,
        "message": "Call forwarded successfully",
        "callSid": call_sid,
        "forwardingTo": result.forwarding_to,
    }


@router.get("/call-status/{call_sid}")
async def call_status(call_sid: str, runtime: CallBridgeRuntime = Depends(get_runtime)):
    try:
        call = await runtime.orchestrator.get_call_status(call_sid)
    except TelephonyError as e:
        if e.status == 404:
            return _error(404, "Call not found")
        logger.error(f"Error fetching call status for {call_sid}: {e}")
        return _error(500, "Failed to fetch call status")

    return {"success": True, "call": call}


@router.post("/end-call/{call_sid}")
async def end_call(call_sid: str, runtime: CallBridgeRuntime = Depends(get_runtime)):
    try:
        await runtime.orchestrator.end_call(call_sid)
    except TelephonyError as e:
        logger.error(f"Error ending call {call_sid}: {e}")
        return _error(500, "Failed to end call")

    return {"success": True, "message": "Call ended successfully"}
