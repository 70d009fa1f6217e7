"""
Fetch -> sync -> detect pipeline for one user, and the batch run over every
connected user used by the cron endpoint and the worker scheduler.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.errors import CredentialExpiredError
from app.core.time import today_utc, trailing_window
from app.services.analytics_sync import SyncResult, sync_analytics_report
from app.services.credentials import (
    Refresher,
    credential_for,
    ensure_fresh_credential,
    get_ga_account,
    list_connected_user_ids,
    refresh_and_store,
)
from app.services.ga_client import ClientFactory, fetch_analytics_report

logger = logging.getLogger(__name__)


@dataclass
class UserSyncOutcome:
    user_id: str
    status: str
    message: Optional[str] = None
    result: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"user_id": self.user_id, "status": self.status}
        if self.message is not None:
            payload["message"] = self.message
        if self.result is not None:
            payload["result"] = self.result
        return payload


async def run_user_sync(
    db: Session,
    user_id: str,
    start_date: date,
    end_date: date,
    *,
    client_factory: ClientFactory | None = None,
    refresher: Refresher | None = None,
    replace_child_rows: bool | None = None,
    today: date | None = None,
) -> SyncResult:
    """Sync one user's GA4 data for an inclusive date range.

    An UNAUTHENTICATED response triggers one refresh-and-retry, unless the
    token was already refreshed just before the fetch. Any other fetch
    failure aborts the run.
    """
    account = get_ga_account(db, user_id)
    original = credential_for(account)
    credential = ensure_fresh_credential(db, account, refresher=refresher)
    already_refreshed = credential != original

    try:
        report = await fetch_analytics_report(
            credential,
            account.ga_property_id,
            start_date,
            end_date,
            client_factory=client_factory,
        )
    except CredentialExpiredError:
        if already_refreshed:
            raise
        logger.info("GA4 rejected token for user %s, refreshing and retrying once", user_id)
        credential = refresh_and_store(db, account, refresher=refresher)
        report = await fetch_analytics_report(
            credential,
            account.ga_property_id,
            start_date,
            end_date,
            client_factory=client_factory,
        )

    return sync_analytics_report(
        db,
        user_id,
        report,
        replace_child_rows=replace_child_rows,
        today=today,
    )


async def run_user_sync_for_days(
    db: Session,
    user_id: str,
    days: int,
    *,
    today: date | None = None,
    **kwargs: Any,
) -> SyncResult:
    """On-demand sync of the last `days` days ending today."""
    resolved_today = today or today_utc()
    start, end = trailing_window(days, today=resolved_today)
    return await run_user_sync(db, user_id, start, end, today=resolved_today, **kwargs)


async def run_scheduled_sync(
    *,
    window_days: int | None = None,
    session_factory: Callable[[], Session] | None = None,
    max_concurrency: int | None = None,
    client_factory: ClientFactory | None = None,
    refresher: Refresher | None = None,
    today: date | None = None,
) -> list[UserSyncOutcome]:
    """Sync every connected user over a short trailing window.

    Each user gets its own session; one user's failure is recorded in its
    outcome and never stops the others.
    """
    make_session = session_factory or SessionLocal
    resolved_days = int(window_days or getattr(settings, "SCHEDULED_SYNC_WINDOW_DAYS", 2) or 2)
    resolved_concurrency = max(1, int(max_concurrency or getattr(settings, "SCHEDULED_SYNC_MAX_CONCURRENCY", 1) or 1))
    resolved_today = today or today_utc()
    start, end = trailing_window(resolved_days, today=resolved_today)

    db = make_session()
    try:
        user_ids = list_connected_user_ids(db)
    finally:
        db.close()

    if not user_ids:
        logger.info("Scheduled sync: no connected accounts")
        return []

    logger.info(
        "Scheduled sync: %d users, window %s..%s, concurrency %d",
        len(user_ids),
        start,
        end,
        resolved_concurrency,
    )
    semaphore = asyncio.Semaphore(resolved_concurrency)

    async def _sync_one(user_id: str) -> UserSyncOutcome:
        async with semaphore:
            user_db = make_session()
            try:
                result = await run_user_sync(
                    user_db,
                    user_id,
                    start,
                    end,
                    client_factory=client_factory,
                    refresher=refresher,
                    today=resolved_today,
                )
                return UserSyncOutcome(user_id=user_id, status="success", result=result.to_dict())
            except Exception as e:
                logger.error("Scheduled sync failed for user %s: %s", user_id, e)
                user_db.rollback()
                return UserSyncOutcome(user_id=user_id, status="error", message=str(e))
            finally:
                user_db.close()

    outcomes = await asyncio.gather(*(_sync_one(user_id) for user_id in user_ids))
    failed = sum(1 for outcome in outcomes if outcome.status != "success")
    logger.info("Scheduled sync done: %d ok, %d failed", len(outcomes) - failed, failed)
    return list(outcomes)
