import time

from fastapi import APIRouter, Depends, Request, Response

from familyhub import __version__, jobs_state
from familyhub.core.db import check_db_health
from familyhub.core.settings import Settings, get_settings

router = APIRouter()

_started = time.monotonic()


def _uptime_seconds() -> float:
    return round(time.monotonic() - _started, 1)


@router.api_route("/", methods=["GET", "HEAD"], summary="Liveness check", response_model=None)
async def health(request: Request):
    if request.method == "HEAD":
        return Response(status_code=200)
    return {"ok": True}


@router.get("/full", summary="Full health check")
async def full_health(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> dict:
    db_status = await check_db_health()
    return {
        "ok": bool(db_status.get("ok")),
        "uptime_seconds": _uptime_seconds(),
        "version": __version__,
        "database": db_status,
        "push": {
            "configured": request.app.state.dispatcher.is_configured,
            "sandbox": settings.push.use_sandbox,
        },
        "oauth": {"configured": request.app.state.oauth_client.is_configured},
        "cron": {
            "internal": settings.scheduler.enabled,
            "secret_configured": bool(settings.security.cron_secret),
        },
    }


@router.get("/jobs", summary="Background job status")
async def jobs_health() -> dict:
    return {"jobs": jobs_state.get_all_states()}
