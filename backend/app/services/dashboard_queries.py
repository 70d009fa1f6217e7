"""
Dashboard Queries

Range reads over the stored GA4 data: daily metrics, detected events, the
summed top pages and referrers, and the header-card totals.
"""
from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.models import AnalyticsEvent, DailyAnalytics, Referrer, TopPage

DEFAULT_TOP_LIMIT = 10


def _serialize_day(row: DailyAnalytics) -> dict[str, Any]:
    return {
        "id": int(row.id),
        "date": row.date.isoformat(),
        "visitors": int(row.visitors or 0),
        "page_views": int(row.page_views or 0),
        "avg_session_duration": float(row.avg_session_duration or 0.0),
        "bounce_rate": float(row.bounce_rate or 0.0),
    }


def _serialize_event(row: AnalyticsEvent) -> dict[str, Any]:
    return {
        "id": int(row.id),
        "date": row.date.isoformat(),
        "event_type": row.event_type,
        "title": row.title,
        "description": row.description,
        "value": float(row.value or 0.0),
    }


def fetch_daily_analytics(db: Session, user_id: str, start: date, end: date) -> list[dict[str, Any]]:
    rows = (
        db.query(DailyAnalytics)
        .filter(
            DailyAnalytics.user_id == user_id,
            DailyAnalytics.date >= start,
            DailyAnalytics.date <= end,
        )
        .order_by(DailyAnalytics.date.asc())
        .all()
    )
    return [_serialize_day(row) for row in rows]


def fetch_events(db: Session, user_id: str, start: date, end: date) -> list[dict[str, Any]]:
    rows = (
        db.query(AnalyticsEvent)
        .filter(
            AnalyticsEvent.user_id == user_id,
            AnalyticsEvent.date >= start,
            AnalyticsEvent.date <= end,
        )
        .order_by(AnalyticsEvent.date.asc(), AnalyticsEvent.id.asc())
        .all()
    )
    return [_serialize_event(row) for row in rows]


def _days_in_range(user_id: str, start: date, end: date):
    return (
        DailyAnalytics.user_id == user_id,
        DailyAnalytics.date >= start,
        DailyAnalytics.date <= end,
    )


def fetch_top_referrers(
    db: Session, user_id: str, start: date, end: date, *, limit: int = DEFAULT_TOP_LIMIT
) -> list[dict[str, Any]]:
    """Visitors per source summed across the range, highest first."""
    total = func.sum(Referrer.visitors).label("visitors")
    rows = (
        db.query(Referrer.source, total)
        .join(DailyAnalytics, Referrer.daily_analytics_id == DailyAnalytics.id)
        .filter(*_days_in_range(user_id, start, end))
        .group_by(Referrer.source)
        .order_by(total.desc(), Referrer.source.asc())
        .limit(limit)
        .all()
    )
    return [{"source": row.source, "visitors": int(row.visitors or 0)} for row in rows]


def fetch_top_pages(
    db: Session, user_id: str, start: date, end: date, *, limit: int = DEFAULT_TOP_LIMIT
) -> list[dict[str, Any]]:
    """Page views per path summed across the range, highest first."""
    total = func.sum(TopPage.page_views).label("page_views")
    rows = (
        db.query(TopPage.page_path, total)
        .join(DailyAnalytics, TopPage.daily_analytics_id == DailyAnalytics.id)
        .filter(*_days_in_range(user_id, start, end))
        .group_by(TopPage.page_path)
        .order_by(total.desc(), TopPage.page_path.asc())
        .limit(limit)
        .all()
    )
    return [{"page_path": row.page_path, "page_views": int(row.page_views or 0)} for row in rows]


def summarize_range(db: Session, user_id: str, start: date, end: date) -> dict[str, Any]:
    """Header-card totals for the dashboard and the share screenshot."""
    days = fetch_daily_analytics(db, user_id, start, end)
    day_count = len(days)
    if not day_count:
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "days": 0,
            "visitors": 0,
            "page_views": 0,
            "avg_session_duration": 0.0,
            "bounce_rate": 0.0,
        }

    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "days": day_count,
        "visitors": sum(day["visitors"] for day in days),
        "page_views": sum(day["page_views"] for day in days),
        "avg_session_duration": sum(day["avg_session_duration"] for day in days) / day_count,
        "bounce_rate": sum(day["bounce_rate"] for day in days) / day_count,
    }
