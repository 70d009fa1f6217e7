"""
Upserts a fetched GA4 report into the store and re-runs event detection.

Days are keyed on (user_id, date). Each day is committed on its own so one
bad day is logged and skipped without losing the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import PersistenceError
from app.models.models import DailyAnalytics, Referrer, TopPage
from app.services.event_detection import detect_and_store_events
from app.services.ga_client import AnalyticsReport, DailyRow

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    user_id: str
    inserted_days: list[date] = field(default_factory=list)
    updated_days: list[date] = field(default_factory=list)
    failed_days: list[dict[str, str]] = field(default_factory=list)
    events_created: int = 0
    detection_error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed_days and self.detection_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "inserted_days": [day.isoformat() for day in self.inserted_days],
            "updated_days": [day.isoformat() for day in self.updated_days],
            "failed_days": list(self.failed_days),
            "events_created": self.events_created,
            "detection_error": self.detection_error,
        }


def _build_children(report: AnalyticsReport) -> tuple[list[TopPage], list[Referrer]]:
    pages = [TopPage(page_path=row.page_path, page_views=row.page_views) for row in report.top_page_rows]
    referrers = [Referrer(source=row.source, visitors=row.visitors) for row in report.referrer_rows]
    return pages, referrers


def _apply_metrics(record: DailyAnalytics, row: DailyRow) -> None:
    record.visitors = max(0, int(row.visitors))
    record.page_views = max(0, int(row.page_views))
    record.avg_session_duration = float(row.avg_session_duration)
    record.bounce_rate = float(row.bounce_rate)


def upsert_day(
    db: Session,
    user_id: str,
    row: DailyRow,
    report: AnalyticsReport,
    *,
    replace_child_rows: bool,
) -> bool:
    """Insert or update one day. Returns True when the day was newly inserted."""
    record = (
        db.query(DailyAnalytics)
        .filter(DailyAnalytics.user_id == user_id, DailyAnalytics.date == row.day)
        .first()
    )

    if record is not None:
        logger.debug("Updating analytics for user %s on %s", user_id, row.day)
        _apply_metrics(record, row)
        if replace_child_rows:
            pages, referrers = _build_children(report)
            # delete-orphan cascade removes the previous rows.
            record.top_pages = pages
            record.referrers = referrers
        return False

    logger.debug("Inserting analytics for user %s on %s", user_id, row.day)
    record = DailyAnalytics(user_id=user_id, date=row.day)
    _apply_metrics(record, row)
    pages, referrers = _build_children(report)
    record.top_pages = pages
    record.referrers = referrers
    db.add(record)
    return True


def sync_analytics_report(
    db: Session,
    user_id: str,
    report: AnalyticsReport,
    *,
    replace_child_rows: bool | None = None,
    detect: bool = True,
    today: date | None = None,
) -> SyncResult:
    """Upsert every day in `report`, then detect events over the trailing window."""
    if replace_child_rows is None:
        replace_child_rows = bool(getattr(settings, "SYNC_REPLACE_CHILD_ROWS", True))

    result = SyncResult(user_id=user_id)
    logger.info("Syncing %d days of analytics for user %s", len(report.daily_rows), user_id)

    for row in report.daily_rows:
        try:
            inserted = upsert_day(db, user_id, row, report, replace_child_rows=replace_child_rows)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to store analytics for user %s on %s: %s", user_id, row.day, exc)
            result.failed_days.append({"date": row.day.isoformat(), "error": str(exc)})
            continue

        if inserted:
            result.inserted_days.append(row.day)
        else:
            result.updated_days.append(row.day)

    if detect:
        try:
            created = detect_and_store_events(db, user_id, today=today)
            db.commit()
            result.events_created = len(created)
        except (PersistenceError, SQLAlchemyError) as exc:
            db.rollback()
            logger.error("Event detection failed for user %s: %s", user_id, exc)
            result.detection_error = str(exc)

    logger.info(
        "Sync for user %s done: %d inserted, %d updated, %d failed, %d new events",
        user_id,
        len(result.inserted_days),
        len(result.updated_days),
        len(result.failed_days),
        result.events_created,
    )
    return result
