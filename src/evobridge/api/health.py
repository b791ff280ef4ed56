"""Health and readiness endpoints.

Learn: /health always answers 200 while the process is up; ``status`` is
"degraded" when the upstream socket is down so dashboards can tell the
difference without the orchestrator killing the pod. /ready is a plain
liveness-style probe.
"""

from fastapi import APIRouter, Request

from evobridge import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Server status, upstream connectivity and pipeline counters."""
    bridge = request.app.state.bridge
    upstream = "connected" if bridge.upstream.connected else "disconnected"
    return {
        "status": "healthy" if upstream == "connected" else "degraded",
        "server": "ok",
        "version": __version__,
        "upstream": upstream,
        "mode": "catch_all" if bridge.dispatcher.catch_all else "filtered",
        "in_flight": bridge.dispatcher.in_flight,
        "stats": bridge.dispatcher.stats.as_dict(),
    }


@router.get("/ready")
async def ready():
    return {"status": "ready"}
