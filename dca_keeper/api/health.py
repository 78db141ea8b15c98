from fastapi import APIRouter, HTTPException
from typing import Dict, Any

from ..runtime import get_runtime

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Liveness plus RPC provider status"""

    runtime = get_runtime()
    provider_status = {"sui_rpc": await runtime.client.health_check()}

    rpc_healthy = provider_status["sui_rpc"]["status"] == "healthy"
    status = "healthy" if runtime.is_running and rpc_healthy else "degraded"
    if runtime.status()["paused_reason"]:
        status = "degraded"

    return {
        "status": status,
        "running": runtime.is_running,
        "providers": provider_status,
    }


@router.get("/status")
async def keeper_status() -> Dict[str, Any]:
    """Runtime counters, last cycle and quarantine list"""
    return get_runtime().status()


@router.post("/trigger")
async def trigger_cycle() -> Dict[str, Any]:
    """Request an immediate cycle"""
    if not get_runtime().trigger():
        raise HTTPException(status_code=409, detail="keeper is not running")
    return {"triggered": True}
