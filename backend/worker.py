#!/usr/bin/env python3
"""
Worker Entry Point - Runs the scheduled GA4 refresh.
This is a separate process from the API server.
"""
import asyncio
import logging
import os
import json
import sys
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from app.core.config import settings
from app.services.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
STATUS_LOG_SECONDS = max(30, int(os.environ.get("WORKER_STATUS_LOG_SECONDS", "300")))


def health_payload() -> dict:
    """Worker liveness plus the outcome of the most recent scheduled GA4 sync."""
    last_sync = scheduler.last_sync
    return {
        "status": "degraded" if last_sync and last_sync.get("status") == "error" else "ok",
        "service": "statsnap-worker",
        "environment": settings.ENVIRONMENT,
        "scheduled_sync_enabled": bool(settings.SCHEDULED_SYNC_ENABLED),
        "scheduler_running": scheduler.running,
        "last_sync": last_sync,
    }


async def _healthcheck_handler(
    reader: asyncio.StreamReader, writer: asyncio.StreamWriter
) -> None:
    """Serve a minimal HTTP health response for platform worker health checks."""
    try:
        request_line = await reader.readline()
        if not request_line:
            return

        parts = request_line.decode("utf-8", errors="ignore").strip().split()
        method = parts[0] if len(parts) >= 1 else "GET"
        path = parts[1] if len(parts) >= 2 else "/"

        # Drain request headers.
        while True:
            line = await reader.readline()
            if not line or line in (b"\r\n", b"\n"):
                break

        if method == "GET" and path == "/health":
            body = json.dumps(health_payload()).encode("utf-8")
            status = "200 OK"
        else:
            body = b'{"status":"not_found"}'
            status = "404 Not Found"

        response = (
            f"HTTP/1.1 {status}\r\n"
            "Content-Type: application/json\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n"
            "\r\n"
        ).encode("utf-8") + body

        writer.write(response)
        await writer.drain()
    except (ConnectionError, asyncio.IncompleteReadError) as e:
        logger.debug("Health request dropped: %s", e)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass


async def _start_health_server() -> asyncio.AbstractServer | None:
    """Start lightweight worker health server bound to PORT."""
    port_raw = str(os.environ.get("PORT", "8080") or "8080").strip()
    try:
        port = int(port_raw)
    except ValueError:
        logger.warning(
            "Invalid PORT=%s for worker health server; skipping health endpoint",
            port_raw,
        )
        return None

    server = await asyncio.start_server(_healthcheck_handler, host="0.0.0.0", port=port)
    logger.info("Worker health server listening on 0.0.0.0:%s", port)
    return server


async def main():
    """Main worker entry point."""
    logger.info("=" * 60)
    logger.info("STATSNAP WORKER - Starting")
    logger.info("=" * 60)
    logger.info("Environment: %s", settings.ENVIRONMENT)
    logger.info(
        "Scheduled sync: enabled=%s window=%sd interval=%smin concurrency=%s",
        settings.SCHEDULED_SYNC_ENABLED,
        settings.SCHEDULED_SYNC_WINDOW_DAYS,
        settings.SCHEDULED_SYNC_INTERVAL_MINUTES,
        settings.SCHEDULED_SYNC_MAX_CONCURRENCY,
    )

    health_server = await _start_health_server()

    try:
        if settings.SCHEDULED_SYNC_ENABLED:
            await scheduler.start(interval_minutes=settings.SCHEDULED_SYNC_INTERVAL_MINUTES)
        else:
            logger.info("SCHEDULED_SYNC_ENABLED is false, worker will idle")

        while True:
            await asyncio.sleep(STATUS_LOG_SECONDS)
            logger.info("Status: scheduler running=%s tasks=%d", scheduler.running, len(scheduler.tasks))
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error("Worker error: %s", e)
        raise
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        if health_server is not None:
            health_server.close()
            await health_server.wait_closed()
        logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
