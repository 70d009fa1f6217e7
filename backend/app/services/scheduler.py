"""
Scheduled Tasks - periodic GA4 refresh for every connected account.
"""
import asyncio
import logging
from typing import Any, Optional

from app.core.config import settings
from app.core.time import now_utc
from app.services.analytics_pipeline import run_scheduled_sync

logger = logging.getLogger(__name__)


async def refresh_connected_accounts() -> dict[str, Any]:
    """Pull the short trailing window for every connected user and summarize the run."""
    outcomes = await run_scheduled_sync()
    failed = [outcome.user_id for outcome in outcomes if outcome.status != "success"]
    if failed:
        logger.warning("Scheduled refresh failed for %d users: %s", len(failed), ", ".join(failed))
    return {
        "processed": len(outcomes),
        "succeeded": len(outcomes) - len(failed),
        "failed_users": failed,
    }


class SchedulerRunner:
    """Manages scheduled tasks."""

    def __init__(self):
        self.running = False
        self.tasks = []
        self.last_sync: Optional[dict[str, Any]] = None

    async def start(self, interval_minutes: int | None = None):
        """Start the scheduler."""
        self.running = True
        minutes = max(
            1,
            int(interval_minutes or getattr(settings, "SCHEDULED_SYNC_INTERVAL_MINUTES", 360) or 360),
        )

        self.tasks.append(
            asyncio.create_task(self._run_periodic(refresh_connected_accounts, minutes * 60))
        )

        logger.info("Scheduler started (refresh every %d minutes)", minutes)

    async def stop(self):
        """Stop the scheduler."""
        self.running = False

        for task in self.tasks:
            task.cancel()

        self.tasks.clear()
        logger.info("Scheduler stopped")

    async def run_once(self, func=None) -> dict[str, Any]:
        """Run one refresh and remember its outcome for the worker health check."""
        job = func or refresh_connected_accounts
        started_at = now_utc()
        try:
            summary = await job()
        except Exception as e:
            logger.error("Error in scheduled task %s: %s", job.__name__, e)
            self.last_sync = {"status": "error", "started_at": started_at.isoformat(), "error": str(e)}
        else:
            status = "ok" if not summary.get("failed_users") else "partial"
            self.last_sync = {"status": status, "started_at": started_at.isoformat(), **summary}
        self.last_sync["finished_at"] = now_utc().isoformat()
        return self.last_sync

    async def _run_periodic(self, func, interval_seconds: int):
        """Run a function periodically."""
        while self.running:
            await self.run_once(func)
            await asyncio.sleep(interval_seconds)


# Singleton scheduler
scheduler = SchedulerRunner()
