"""
Health, diagnostics e métricas.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST

from callbridge.runtime import CallBridgeRuntime

from .app import get_runtime

router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    return {"message": "Server is running"}


@router.get("/health")
async def health():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@router.get("/diagnostics")
async def diagnostics(runtime: CallBridgeRuntime = Depends(get_runtime)):
    """Estado interno para debug operacional."""
    registry = runtime.registry
    return {
        "calls": {
            "total": len(registry),
            "active": len(registry.active_records()),
            "byStatus": registry.counts_by_status(),
        },
        "activeBridges": runtime.orchestrator.active_bridges,
        "dashboardObservers": runtime.broadcaster.observer_count,
        "cooldownEntries": len(runtime.cooldowns),
        "credentials": runtime.credentials.status(),
        "reaperSweeps": runtime.reaper.sweeps,
    }


@router.get("/metrics")
async def metrics(runtime: CallBridgeRuntime = Depends(get_runtime)):
    return Response(content=runtime.metrics.render(), media_type=CONTENT_TYPE_LATEST)
