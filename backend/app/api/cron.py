"""Scheduled-trigger endpoint hit by the external cron."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.auth import require_cron_auth
from app.services.analytics_pipeline import run_scheduled_sync

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/fetch-analytics", dependencies=[Depends(require_cron_auth)])
async def cron_fetch_analytics():
    """Refresh the trailing window for every connected user."""
    try:
        outcomes = await run_scheduled_sync()
    except Exception as e:
        logger.error("Error in cron job: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to process analytics data: {e}") from e

    if not outcomes:
        return {"message": "No GA accounts found", "processed": 0, "results": []}

    return {
        "message": "Analytics data fetched and processed",
        "processed": len(outcomes),
        "results": [outcome.to_dict() for outcome in outcomes],
    }
