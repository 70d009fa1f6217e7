"""
Google Analytics 4 Data API client.

Runs the three report queries a sync needs (daily metrics, top pages, top
session sources) and normalizes the rows. The synchronous GA4 client is
driven from worker threads so the three queries run concurrently.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Dimension,
    Metric,
    OrderBy,
    RunReportRequest,
)
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2.credentials import Credentials

from app.core.config import settings
from app.core.errors import CredentialExpiredError, UpstreamFetchError
from app.core.time import ensure_utc, now_utc, parse_day

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]
TOP_ROWS_LIMIT = 10

DAILY_METRICS = ["activeUsers", "screenPageViews", "averageSessionDuration", "bounceRate"]


@dataclass(frozen=True)
class Credential:
    """OAuth token snapshot for one user. Refreshing yields a new value."""

    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    def is_expired(self, now: datetime | None = None) -> bool:
        expiry = ensure_utc(self.expiry)
        if expiry is None:
            return False
        return expiry <= (now or now_utc())

    def to_google_credentials(self) -> Credentials:
        expiry = ensure_utc(self.expiry)
        return Credentials(
            token=self.access_token,
            refresh_token=self.refresh_token,
            token_uri=settings.GOOGLE_TOKEN_URI,
            client_id=settings.GOOGLE_CLIENT_ID or None,
            client_secret=settings.GOOGLE_CLIENT_SECRET or None,
            scopes=SCOPES,
            # google-auth compares expiry against naive UTC.
            expiry=expiry.replace(tzinfo=None) if expiry else None,
        )


@dataclass(frozen=True)
class DailyRow:
    day: date
    visitors: int
    page_views: int
    avg_session_duration: float
    bounce_rate: float  # percent, 0-100


@dataclass(frozen=True)
class TopPageRow:
    page_path: str
    page_views: int


@dataclass(frozen=True)
class ReferrerRow:
    source: str
    visitors: int


@dataclass
class AnalyticsReport:
    daily_rows: list[DailyRow] = field(default_factory=list)
    top_page_rows: list[TopPageRow] = field(default_factory=list)
    referrer_rows: list[ReferrerRow] = field(default_factory=list)


ClientFactory = Callable[[Credential], Any]


def refresh_credential(credential: Credential) -> Credential:
    """Exchange the refresh token for a new access token."""
    if not credential.refresh_token:
        raise CredentialExpiredError("Access token expired and no refresh token is stored")

    google_credentials = credential.to_google_credentials()
    try:
        google_credentials.refresh(GoogleAuthRequest())
    except (auth_exceptions.RefreshError, auth_exceptions.TransportError) as exc:
        raise CredentialExpiredError(f"Failed to refresh access token: {exc}") from exc

    expiry = google_credentials.expiry
    return Credential(
        access_token=google_credentials.token,
        refresh_token=google_credentials.refresh_token or credential.refresh_token,
        expiry=expiry.replace(tzinfo=timezone.utc) if expiry else None,
    )


def default_client_factory(credential: Credential) -> BetaAnalyticsDataClient:
    return BetaAnalyticsDataClient(credentials=credential.to_google_credentials())


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _build_request(
    property_id: str,
    start_date: str,
    end_date: str,
    *,
    dimensions: list[str],
    metrics: list[str],
    order_by_metric: str | None = None,
    limit: int | None = None,
) -> RunReportRequest:
    request = RunReportRequest(
        property=f"properties/{property_id}",
        date_ranges=[DateRange(start_date=start_date, end_date=end_date)],
        dimensions=[Dimension(name=name) for name in dimensions],
        metrics=[Metric(name=name) for name in metrics],
    )
    if order_by_metric:
        request.order_bys = [OrderBy(metric=OrderBy.MetricOrderBy(metric_name=order_by_metric), desc=True)]
    if limit:
        request.limit = limit
    return request


def call_google(func: Callable[..., Any], *args: Any, label: str, **kwargs: Any) -> Any:
    """Call a Google client method, translating its failures into sync errors.

    UNAUTHENTICATED and refresh failures raise CredentialExpiredError; any
    other API, retry-deadline or auth failure raises UpstreamFetchError.
    """
    try:
        return func(*args, **kwargs)
    except google_exceptions.Unauthenticated as exc:
        raise CredentialExpiredError(f"GA4 rejected the access token ({label}): {exc.message}") from exc
    except google_exceptions.GoogleAPICallError as exc:
        raise UpstreamFetchError(f"GA4 {label} failed: {exc.message}") from exc
    except google_exceptions.GoogleAPIError as exc:
        # RetryError and other client-side failures carry no status code.
        raise UpstreamFetchError(f"GA4 {label} failed: {exc}") from exc
    except auth_exceptions.RefreshError as exc:
        raise CredentialExpiredError(f"GA4 credential refresh failed ({label}): {exc}") from exc
    except auth_exceptions.GoogleAuthError as exc:
        raise UpstreamFetchError(f"GA4 {label} failed: {exc}") from exc


def _run_report(client: Any, request: RunReportRequest, *, label: str) -> list[Any]:
    response = call_google(client.run_report, request, label=f"{label} report")
    rows = list(response.rows or [])
    logger.debug("GA4 %s report returned %d rows", label, len(rows))
    return rows


def parse_daily_rows(rows: list[Any]) -> list[DailyRow]:
    parsed = []
    for row in rows:
        metrics = row.metric_values
        parsed.append(
            DailyRow(
                day=parse_day(row.dimension_values[0].value),
                visitors=_to_int(metrics[0].value),
                page_views=_to_int(metrics[1].value),
                avg_session_duration=_to_float(metrics[2].value),
                # GA4 reports bounceRate as a 0-1 fraction.
                bounce_rate=round(_to_float(metrics[3].value) * 100, 2),
            )
        )
    parsed.sort(key=lambda item: item.day)
    return parsed


def parse_top_page_rows(rows: list[Any]) -> list[TopPageRow]:
    return [
        TopPageRow(page_path=row.dimension_values[0].value, page_views=_to_int(row.metric_values[0].value))
        for row in rows
    ]


def parse_referrer_rows(rows: list[Any]) -> list[ReferrerRow]:
    return [
        ReferrerRow(source=row.dimension_values[0].value, visitors=_to_int(row.metric_values[0].value))
        for row in rows
    ]


async def fetch_analytics_report(
    credential: Credential,
    property_id: str,
    start_date: date | str,
    end_date: date | str,
    *,
    client_factory: ClientFactory | None = None,
) -> AnalyticsReport:
    """Fetch daily metrics, top pages and referrers for an inclusive date range."""
    start = start_date.isoformat() if isinstance(start_date, date) else str(start_date)
    end = end_date.isoformat() if isinstance(end_date, date) else str(end_date)
    client = (client_factory or default_client_factory)(credential)

    daily_request = _build_request(property_id, start, end, dimensions=["date"], metrics=DAILY_METRICS)
    pages_request = _build_request(
        property_id,
        start,
        end,
        dimensions=["pagePath"],
        metrics=["screenPageViews"],
        order_by_metric="screenPageViews",
        limit=TOP_ROWS_LIMIT,
    )
    referrers_request = _build_request(
        property_id,
        start,
        end,
        dimensions=["sessionSource"],
        metrics=["activeUsers"],
        order_by_metric="activeUsers",
        limit=TOP_ROWS_LIMIT,
    )

    logger.info("Fetching GA4 reports for property %s from %s to %s", property_id, start, end)
    daily, pages, referrers = await asyncio.gather(
        asyncio.to_thread(_run_report, client, daily_request, label="daily"),
        asyncio.to_thread(_run_report, client, pages_request, label="top pages"),
        asyncio.to_thread(_run_report, client, referrers_request, label="referrers"),
    )

    return AnalyticsReport(
        daily_rows=parse_daily_rows(daily),
        top_page_rows=parse_top_page_rows(pages),
        referrer_rows=parse_referrer_rows(referrers),
    )
