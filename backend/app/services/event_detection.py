"""Day-over-day event detection (spikes, drops, milestones, growth streaks).

`detect_events` is a pure pass over an ascending visitor series.
`detect_and_store_events` reads a user's trailing window from the store and
upserts whatever the pass finds on the (user, date, type, dedupe_key) key, so
re-running detection over the same window never duplicates rows.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import PersistenceError
from app.core.time import today_utc
from app.models.models import AnalyticsEvent, DailyAnalytics

logger = logging.getLogger(__name__)

SPIKE_RATIO = 1.5
DROP_RATIO = 0.7
# Below this many visitors yesterday a relative drop is just noise.
DROP_MIN_VISITORS = 10
MILESTONE_THRESHOLDS = (100, 500, 1000, 5000, 10000)
MIN_STREAK_DAYS = 5


@dataclass(frozen=True)
class VisitorPoint:
    day: date
    visitors: int


@dataclass(frozen=True)
class DetectedEvent:
    day: date
    event_type: str
    title: str
    description: str
    value: float
    dedupe_key: str = ""
    percent_change: int | None = None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _spike(yesterday: VisitorPoint, today: VisitorPoint) -> DetectedEvent | None:
    if yesterday.visitors <= 0 or today.visitors <= yesterday.visitors * SPIKE_RATIO:
        return None
    percent = _round_half_up((today.visitors - yesterday.visitors) / yesterday.visitors * 100)
    return DetectedEvent(
        day=today.day,
        event_type="spike",
        title="Traffic Spike",
        description=f"Your traffic increased by {percent}% from yesterday",
        value=float(today.visitors),
        percent_change=percent,
    )


def _drop(yesterday: VisitorPoint, today: VisitorPoint) -> DetectedEvent | None:
    if yesterday.visitors <= DROP_MIN_VISITORS or today.visitors >= yesterday.visitors * DROP_RATIO:
        return None
    percent = _round_half_up((yesterday.visitors - today.visitors) / yesterday.visitors * 100)
    return DetectedEvent(
        day=today.day,
        event_type="drop",
        title="Traffic Drop",
        description=f"Your traffic decreased by {percent}% from yesterday",
        value=float(today.visitors),
        percent_change=percent,
    )


def _milestones(yesterday: VisitorPoint, today: VisitorPoint) -> list[DetectedEvent]:
    return [
        DetectedEvent(
            day=today.day,
            event_type="milestone",
            title=f"{threshold} Visitors Milestone",
            description=f"Congratulations! Your site reached {threshold} visitors in a day",
            value=float(today.visitors),
            dedupe_key=str(threshold),
        )
        for threshold in MILESTONE_THRESHOLDS
        if yesterday.visitors < threshold <= today.visitors
    ]


def _streak(last_day: date, length: int) -> DetectedEvent:
    return DetectedEvent(
        day=last_day,
        event_type="streak",
        title=f"{length} Day Growth Streak",
        description=f"Your site had {length} consecutive days of traffic growth",
        value=float(length),
    )


def detect_events(points: Sequence[VisitorPoint]) -> list[DetectedEvent]:
    """Run every rule over `points` (ascending by day) in a single forward pass.

    A day may match several rules. Growth streaks are reported once, on the
    last day of the streak, when they end or when the series ends.
    """
    events: list[DetectedEvent] = []
    if len(points) < 2:
        return events

    streak_days = 1
    for index in range(1, len(points)):
        yesterday = points[index - 1]
        today = points[index]

        spike = _spike(yesterday, today)
        if spike:
            events.append(spike)
        drop = _drop(yesterday, today)
        if drop:
            events.append(drop)
        events.extend(_milestones(yesterday, today))

        if today.visitors > yesterday.visitors:
            streak_days += 1
        else:
            if streak_days >= MIN_STREAK_DAYS:
                events.append(_streak(yesterday.day, streak_days))
            streak_days = 1

    if streak_days >= MIN_STREAK_DAYS:
        events.append(_streak(points[-1].day, streak_days))

    return events


def load_visitor_window(db: Session, user_id: str, *, start: date, end: date) -> list[VisitorPoint]:
    rows = (
        db.query(DailyAnalytics.date, DailyAnalytics.visitors)
        .filter(
            DailyAnalytics.user_id == user_id,
            DailyAnalytics.date >= start,
            DailyAnalytics.date <= end,
        )
        .order_by(DailyAnalytics.date.asc())
        .all()
    )
    return [VisitorPoint(day=row.date, visitors=int(row.visitors or 0)) for row in rows]


def upsert_events(db: Session, user_id: str, detected: Iterable[DetectedEvent]) -> list[AnalyticsEvent]:
    """Write detected events keyed on (user, day, type, dedupe_key). Returns newly created rows."""
    created: list[AnalyticsEvent] = []
    for item in detected:
        existing = (
            db.query(AnalyticsEvent)
            .filter(
                AnalyticsEvent.user_id == user_id,
                AnalyticsEvent.date == item.day,
                AnalyticsEvent.event_type == item.event_type,
                AnalyticsEvent.dedupe_key == item.dedupe_key,
            )
            .first()
        )
        if existing:
            existing.title = item.title
            existing.description = item.description
            existing.value = item.value
            continue

        event = AnalyticsEvent(
            user_id=user_id,
            date=item.day,
            event_type=item.event_type,
            title=item.title,
            description=item.description,
            value=item.value,
            dedupe_key=item.dedupe_key,
        )
        db.add(event)
        created.append(event)
    db.flush()
    return created


def detect_and_store_events(
    db: Session,
    user_id: str,
    *,
    today: date | None = None,
    window_days: int | None = None,
) -> list[AnalyticsEvent]:
    """Detect events over the trailing window ending `today` and persist them."""
    resolved_days = int(window_days or getattr(settings, "EVENT_DETECTION_WINDOW_DAYS", 30) or 30)
    end = today or today_utc()
    start = end - timedelta(days=resolved_days)

    try:
        points = load_visitor_window(db, user_id, start=start, end=end)
        if not points:
            logger.info("No analytics data for user %s, skipping event detection", user_id)
            return []

        detected = detect_events(points)
        created = upsert_events(db, user_id, detected)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Event detection failed for user {user_id}: {exc}") from exc

    logger.info(
        "Event detection for user %s: %d days scanned, %d detected, %d new",
        user_id,
        len(points),
        len(detected),
        len(created),
    )
    return created
