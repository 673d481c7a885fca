"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends

from ..core.dependencies import get_user, require_cron

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "powerpulse"}


# ── Auth config (no auth) ───────────────────────────────────────────

@router.get("/auth/config")
async def auth_config():
    from ..core.config import get_settings
    from ..core.flags import get_flags

    flags = get_flags()
    if not flags.use_auth0:
        return {"auth_enabled": False, "message": "Dev mode, no auth required"}

    settings = get_settings()
    return {
        "auth_enabled": True,
        "domain": settings.auth0_domain,
        "audience": settings.auth0_audience,
    }


# ── Cron (CRON_SECRET) ──────────────────────────────────────────────

from .cron import cron_router

router.include_router(cron_router, prefix="/api", dependencies=[Depends(require_cron)])


# ── V1 routes (auth required) ───────────────────────────────────────

from .content import content_router
from .audio import audio_router

router.include_router(content_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(audio_router, prefix="/v1", dependencies=[Depends(get_user)])
