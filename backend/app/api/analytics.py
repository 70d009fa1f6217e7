"""
Analytics API Router

On-demand GA4 sync for the signed-in user plus the read endpoints the
dashboard and the share-screenshot editor render from.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, require_user
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import AnalyticsSyncError, http_status_for
from app.core.time import today_utc
from app.services.analytics_pipeline import run_user_sync_for_days
from app.services.dashboard_queries import (
    fetch_daily_analytics,
    fetch_events,
    fetch_top_pages,
    fetch_top_referrers,
    summarize_range,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class FetchAnalyticsRequest(BaseModel):
    days: Optional[int] = Field(default=None, ge=1)


def _resolve_range(start_date: Optional[str], end_date: Optional[str]) -> tuple[date, date]:
    try:
        end = date.fromisoformat(end_date) if end_date else today_utc()
        start = date.fromisoformat(start_date) if start_date else end - timedelta(days=30)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid date; expected YYYY-MM-DD") from e
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    return start, end


@router.post("/fetch")
async def fetch_analytics(
    payload: Optional[FetchAnalyticsRequest] = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    """Pull the last `days` days from GA4 for the calling user and store them."""
    default_days = int(getattr(settings, "SYNC_DEFAULT_DAYS", 30) or 30)
    max_days = int(getattr(settings, "SYNC_MAX_DAYS", 365) or 365)
    days = min(max_days, int((payload.days if payload else None) or default_days))

    try:
        result = await run_user_sync_for_days(db, user.user_id, days)
    except AnalyticsSyncError as e:
        db.rollback()
        logger.error("Error fetching analytics for user %s: %s", user.user_id, e)
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Database error fetching analytics for user %s: %s", user.user_id, e)
        raise HTTPException(status_code=500, detail="Failed to fetch analytics data") from e

    return {"success": True, "days": days, "result": result.to_dict()}


@router.get("/daily")
def get_daily_analytics(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    """Stored daily metrics for the range, oldest first."""
    start, end = _resolve_range(start_date, end_date)
    return fetch_daily_analytics(db, user.user_id, start, end)


@router.get("/events")
def get_events(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    start, end = _resolve_range(start_date, end_date)
    return fetch_events(db, user.user_id, start, end)


@router.get("/referrers")
def get_referrers(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    start, end = _resolve_range(start_date, end_date)
    return fetch_top_referrers(db, user.user_id, start, end, limit=limit)


@router.get("/top-pages")
def get_top_pages(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    start, end = _resolve_range(start_date, end_date)
    return fetch_top_pages(db, user.user_id, start, end, limit=limit)


@router.get("/summary")
def get_summary(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    """Totals for the header cards."""
    start, end = _resolve_range(start_date, end_date)
    return summarize_range(db, user.user_id, start, end)
