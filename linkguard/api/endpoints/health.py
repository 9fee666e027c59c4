from __future__ import annotations

from fastapi import APIRouter

from linkguard.core.build.backends import BACKENDS
from linkguard.core.observability.metrics import inc_named, snapshot_named

router = APIRouter()


@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


@router.get("/api/v1/health/live")
def liveness():
    inc_named("health_live")
    return {"status": "alive", "backends": sorted(BACKENDS)}


@router.get("/api/v1/metrics/snapshot")
def metrics_snapshot():
    return snapshot_named()
