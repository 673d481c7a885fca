"""
Scheduler-triggered endpoints. Bearer CRON_SECRET required on every call.
Schedulers call with GET; POST is accepted for manual runs.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, HTTPException

from ..models.base import utcnow
from ..services.batch_processor import get_audio_batch_processor
from ..services.content_service import generate_content_for_all_users

logger = logging.getLogger(__name__)

cron_router = APIRouter(prefix="/cron", tags=["cron"])


@cron_router.api_route("/generate-content", methods=["GET", "POST"])
async def cron_generate_content():
    """Generate tomorrow's content for every active subscriber."""
    now = utcnow()
    target = (now + timedelta(days=1)).date()

    try:
        results = await generate_content_for_all_users(target)
    except Exception:
        logger.exception("Content generation cron failed")
        raise HTTPException(status_code=500, detail="Content generation failed")

    generated = sum(1 for r in results if r.success)
    return {
        "success": True,
        "date": target.isoformat(),
        "generated": generated,
        "failed": len(results) - generated,
        "timestamp": now.isoformat(),
    }


@cron_router.api_route("/process-audio", methods=["GET", "POST"])
async def cron_process_audio():
    """Drain due queue jobs, then render any of today's content still missing audio."""
    now = utcnow()
    processor = get_audio_batch_processor()

    try:
        jobs = await processor.process_pending_jobs()
        missing = await processor.generate_missing_audio(now.date())
    except Exception:
        logger.exception("Audio processing cron failed")
        raise HTTPException(status_code=500, detail="Audio processing failed")

    return {
        "success": True,
        "jobs": jobs,
        "missing_audio": missing,
        "timestamp": now.isoformat(),
    }


@cron_router.api_route("/maintenance", methods=["GET", "POST"])
async def cron_maintenance():
    """Reschedule failed jobs and purge old completed ones."""
    processor = get_audio_batch_processor()

    try:
        retried = await processor.retry_failed_jobs()
        cleaned = await processor.cleanup_old_jobs()
    except Exception:
        logger.exception("Maintenance cron failed")
        raise HTTPException(status_code=500, detail="Maintenance failed")

    return {
        "success": True,
        "retried": retried,
        "cleaned": cleaned,
        "timestamp": utcnow().isoformat(),
    }
