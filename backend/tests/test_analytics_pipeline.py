from __future__ import annotations

import asyncio
import threading
import time
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import AccountNotConnectedError, CredentialExpiredError, UpstreamFetchError
from app.models.models import AnalyticsEvent, DailyAnalytics, GaAccount, Referrer, TopPage
from app.services import analytics_pipeline
from app.services.credentials import ensure_fresh_credential, save_ga_account
from app.services.ga_client import Credential

TODAY = date(2026, 3, 10)


def _build_session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    for model in (GaAccount, DailyAnalytics, TopPage, Referrer, AnalyticsEvent):
        model.__table__.create(bind=engine)
    return sessionmaker(bind=engine, future=True)


def _row(dimension: str, *metrics: str):
    return SimpleNamespace(
        dimension_values=[SimpleNamespace(value=dimension)],
        metric_values=[SimpleNamespace(value=value) for value in metrics],
    )


class _FakeGaClient:
    """Answers the three report queries; rejects tokens listed in `rejected_tokens`."""

    def __init__(self, credential, *, rejected_tokens=(), error=None, calls=None):
        self.credential = credential
        self.rejected_tokens = set(rejected_tokens)
        self.error = error
        self.calls = calls if calls is not None else []

    def run_report(self, request):
        self.calls.append((self.credential.access_token, request.dimensions[0].name))
        if self.credential.access_token in self.rejected_tokens:
            raise google_exceptions.Unauthenticated("Request had invalid authentication credentials")
        if self.error is not None:
            raise self.error
        dimension = request.dimensions[0].name
        if dimension == "date":
            yesterday = (TODAY - timedelta(days=1)).strftime("%Y%m%d")
            today = TODAY.strftime("%Y%m%d")
            return SimpleNamespace(
                rows=[_row(yesterday, "40", "80", "12", "0.5"), _row(today, "130", "260", "20", "0.25")]
            )
        if dimension == "pagePath":
            return SimpleNamespace(rows=[_row("/", "200")])
        return SimpleNamespace(rows=[_row("google", "100")])


def _connect(db, user_id: str, *, property_id="123", access_token="token", token_expiry=None):
    return save_ga_account(
        db,
        user_id,
        {
            "property_id": f"properties/{property_id}",
            "account_id": "accounts/999",
            "access_token": access_token,
            "refresh_token": "refresh-token",
            "token_expiry": token_expiry,
        },
    )


def test_save_ga_account_strips_resource_prefixes_and_upserts():
    db = _build_session_factory()()
    _connect(db, "user-1", property_id="111")
    account = _connect(db, "user-1", property_id="222", access_token="token-2")

    assert db.query(GaAccount).count() == 1
    assert account.ga_property_id == "222"
    assert account.ga_account_id == "999"
    assert account.access_token == "token-2"
    db.close()


def test_save_ga_account_requires_property():
    db = _build_session_factory()()
    with pytest.raises(ValueError, match="property_id"):
        save_ga_account(db, "user-1", {"access_token": "x"})
    db.close()


def test_ensure_fresh_credential_writes_back_refreshed_token():
    db = _build_session_factory()()
    expired = datetime(2026, 3, 1, tzinfo=timezone.utc)
    account = _connect(db, "user-1", access_token="stale", token_expiry=expired)
    new_expiry = datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)

    credential = ensure_fresh_credential(
        db,
        account,
        refresher=lambda current: Credential("fresh", current.refresh_token, new_expiry),
        now=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
    )

    assert credential.access_token == "fresh"
    db.expire_all()
    stored = db.query(GaAccount).one()
    assert stored.access_token == "fresh"
    assert stored.refresh_token == "refresh-token"
    db.close()


def test_run_user_sync_fetches_stores_and_detects():
    db = _build_session_factory()()
    _connect(db, "user-1")
    calls = []

    result = asyncio.run(
        analytics_pipeline.run_user_sync_for_days(
            db,
            "user-1",
            30,
            today=TODAY,
            client_factory=lambda credential: _FakeGaClient(credential, calls=calls),
        )
    )

    assert result.ok
    assert sorted(result.inserted_days) == [TODAY - timedelta(days=1), TODAY]
    assert sorted(name for _token, name in calls) == ["date", "pagePath", "sessionSource"]
    day = db.query(DailyAnalytics).filter(DailyAnalytics.date == TODAY).one()
    assert day.visitors == 130
    assert day.bounce_rate == pytest.approx(25.0)
    assert sorted((event.event_type, event.dedupe_key) for event in db.query(AnalyticsEvent)) == [
        ("milestone", "100"),
        ("spike", ""),
    ]
    db.close()


def test_run_user_sync_without_account_raises():
    db = _build_session_factory()()
    with pytest.raises(AccountNotConnectedError):
        asyncio.run(analytics_pipeline.run_user_sync(db, "ghost", TODAY, TODAY))
    db.close()


def test_rejected_token_is_refreshed_and_retried_once():
    db = _build_session_factory()()
    _connect(db, "user-1", access_token="stale")
    refresh_calls = []
    calls = []

    def _refresher(current):
        refresh_calls.append(current.access_token)
        return Credential("fresh", current.refresh_token, None)

    result = asyncio.run(
        analytics_pipeline.run_user_sync(
            db,
            "user-1",
            TODAY - timedelta(days=1),
            TODAY,
            today=TODAY,
            refresher=_refresher,
            client_factory=lambda credential: _FakeGaClient(credential, rejected_tokens={"stale"}, calls=calls),
        )
    )

    assert result.ok
    assert refresh_calls == ["stale"]
    assert {token for token, _name in calls} == {"stale", "fresh"}
    assert db.query(GaAccount).one().access_token == "fresh"
    db.close()


def test_refresh_is_not_retried_twice():
    db = _build_session_factory()()
    _connect(db, "user-1", access_token="stale", token_expiry=datetime(2020, 1, 1, tzinfo=timezone.utc))
    refresh_calls = []

    def _refresher(current):
        refresh_calls.append(current.access_token)
        return Credential("still-bad", current.refresh_token, None)

    with pytest.raises(CredentialExpiredError):
        asyncio.run(
            analytics_pipeline.run_user_sync(
                db,
                "user-1",
                TODAY,
                TODAY,
                refresher=_refresher,
                client_factory=lambda credential: _FakeGaClient(credential, rejected_tokens={"still-bad"}),
            )
        )
    assert refresh_calls == ["stale"]
    assert db.query(DailyAnalytics).count() == 0
    db.close()


def test_upstream_failure_aborts_user_sync():
    db = _build_session_factory()()
    _connect(db, "user-1")
    with pytest.raises(UpstreamFetchError, match="has not been used"):
        asyncio.run(
            analytics_pipeline.run_user_sync(
                db,
                "user-1",
                TODAY,
                TODAY,
                client_factory=lambda credential: _FakeGaClient(
                    credential,
                    error=google_exceptions.PermissionDenied("Google Analytics Data API has not been used"),
                ),
            )
        )
    assert db.query(DailyAnalytics).count() == 0
    db.close()


def test_scheduled_sync_isolates_failures_per_user():
    session_factory = _build_session_factory()
    db = session_factory()
    _connect(db, "user-ok", property_id="1")
    _connect(db, "user-broken", property_id="2")
    _connect(db, "user-ok-2", property_id="3")
    db.close()

    def _broken_factory(credential):
        if credential.access_token == "broken":
            return _FakeGaClient(credential, error=google_exceptions.NotFound("Property not found"))
        return _FakeGaClient(credential)

    db = session_factory()
    db.query(GaAccount).filter(GaAccount.user_id == "user-broken").one().access_token = "broken"
    db.commit()
    db.close()

    outcomes = asyncio.run(
        analytics_pipeline.run_scheduled_sync(
            session_factory=session_factory,
            client_factory=_broken_factory,
            max_concurrency=1,
            today=TODAY,
        )
    )

    by_user = {outcome.user_id: outcome for outcome in outcomes}
    assert [outcome.user_id for outcome in outcomes] == ["user-ok", "user-broken", "user-ok-2"]
    assert by_user["user-ok"].status == "success"
    assert by_user["user-ok-2"].status == "success"
    assert by_user["user-broken"].status == "error"
    assert "Property not found" in by_user["user-broken"].message

    db = session_factory()
    assert {row.user_id for row in db.query(DailyAnalytics)} == {"user-ok", "user-ok-2"}
    db.close()


def test_scheduled_sync_uses_short_trailing_window(monkeypatch):
    session_factory = _build_session_factory()
    db = session_factory()
    _connect(db, "user-1")
    db.close()
    seen = []

    async def _fake_run_user_sync(db, user_id, start_date, end_date, **kwargs):
        seen.append((user_id, start_date, end_date))
        return analytics_pipeline.SyncResult(user_id=user_id)

    monkeypatch.setattr(analytics_pipeline, "run_user_sync", _fake_run_user_sync)
    outcomes = asyncio.run(
        analytics_pipeline.run_scheduled_sync(session_factory=session_factory, window_days=2, today=TODAY)
    )

    assert seen == [("user-1", TODAY - timedelta(days=2), TODAY)]
    assert outcomes[0].to_dict()["status"] == "success"


def test_scheduled_sync_with_no_accounts_returns_empty():
    outcomes = asyncio.run(
        analytics_pipeline.run_scheduled_sync(session_factory=_build_session_factory(), today=TODAY)
    )
    assert outcomes == []


class _OverlapTracker:
    """Records which users have a GA4 report call in flight at the same time."""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: dict[str, int] = {}
        self.max_users_in_flight = 0

    def enter(self, token: str) -> None:
        with self._lock:
            self._in_flight[token] = self._in_flight.get(token, 0) + 1
            self.max_users_in_flight = max(self.max_users_in_flight, len(self._in_flight))

    def leave(self, token: str) -> None:
        with self._lock:
            self._in_flight[token] -= 1
            if not self._in_flight[token]:
                del self._in_flight[token]


class _SlowGaClient(_FakeGaClient):
    def __init__(self, credential, tracker: _OverlapTracker, **kwargs):
        super().__init__(credential, **kwargs)
        self.tracker = tracker

    def run_report(self, request):
        self.tracker.enter(self.credential.access_token)
        try:
            time.sleep(0.05)
            return super().run_report(request)
        finally:
            self.tracker.leave(self.credential.access_token)


def test_parallel_scheduled_sync_isolates_failures():
    session_factory = _build_session_factory()
    db = session_factory()
    for index, user_id in enumerate(["user-a", "user-b", "user-c", "user-d"], start=1):
        _connect(db, user_id, property_id=str(index), access_token=f"token-{user_id}")
    db.close()
    tracker = _OverlapTracker()

    def _factory(credential):
        if credential.access_token == "token-user-b":
            return _SlowGaClient(
                credential,
                tracker,
                error=google_exceptions.ServiceUnavailable("The service is currently unavailable"),
            )
        return _SlowGaClient(credential, tracker)

    outcomes = asyncio.run(
        analytics_pipeline.run_scheduled_sync(
            session_factory=session_factory,
            client_factory=_factory,
            max_concurrency=3,
            today=TODAY,
        )
    )

    assert tracker.max_users_in_flight > 1
    assert [outcome.user_id for outcome in outcomes] == ["user-a", "user-b", "user-c", "user-d"]
    assert [outcome.status for outcome in outcomes] == ["success", "error", "success", "success"]
    assert "currently unavailable" in outcomes[1].message

    db = session_factory()
    days_by_user = {}
    for row in db.query(DailyAnalytics):
        days_by_user.setdefault(row.user_id, set()).add(row.date)
    assert days_by_user == {
        user_id: {TODAY - timedelta(days=1), TODAY} for user_id in ("user-a", "user-c", "user-d")
    }
    assert {row.user_id for row in db.query(AnalyticsEvent)} == {"user-a", "user-c", "user-d"}
    db.close()
