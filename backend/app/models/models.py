"""
SQLAlchemy models for StatSnap.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, Date,
    ForeignKey, DateTime, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

EVENT_TYPES = ("spike", "drop", "milestone", "streak")


class GaAccount(Base):
    """Connected Google Analytics property and the OAuth tokens used to read it."""
    __tablename__ = "ga_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), unique=True, nullable=False)
    ga_account_id = Column(String(64), nullable=True)
    ga_property_id = Column(String(64), nullable=False)
    website_url = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    data_consent = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class DailyAnalytics(Base):
    """One row of GA4 metrics per user per calendar day."""
    __tablename__ = "daily_analytics"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)
    visitors = Column(Integer, nullable=False, default=0)
    page_views = Column(Integer, nullable=False, default=0)
    avg_session_duration = Column(Float, nullable=False, default=0.0)  # seconds
    bounce_rate = Column(Float, nullable=False, default=0.0)  # 0-100
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    top_pages = relationship("TopPage", back_populates="daily_analytics", cascade="all, delete-orphan")
    referrers = relationship("Referrer", back_populates="daily_analytics", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_analytics_user_date"),
        CheckConstraint("visitors >= 0", name="non_negative_visitors"),
        CheckConstraint("bounce_rate >= 0 AND bounce_rate <= 100", name="valid_bounce_rate"),
    )


class TopPage(Base):
    """Most viewed page paths attached to a synced day."""
    __tablename__ = "top_pages"

    id = Column(Integer, primary_key=True)
    daily_analytics_id = Column(
        Integer, ForeignKey("daily_analytics.id", ondelete="CASCADE"), nullable=False
    )
    page_path = Column(Text, nullable=False)
    page_views = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    daily_analytics = relationship("DailyAnalytics", back_populates="top_pages")

    __table_args__ = (
        Index("idx_top_pages_daily_analytics", "daily_analytics_id"),
    )


class Referrer(Base):
    """Top session sources attached to a synced day."""
    __tablename__ = "referrers"

    id = Column(Integer, primary_key=True)
    daily_analytics_id = Column(
        Integer, ForeignKey("daily_analytics.id", ondelete="CASCADE"), nullable=False
    )
    source = Column(String(255), nullable=False)
    visitors = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    daily_analytics = relationship("DailyAnalytics", back_populates="referrers")

    __table_args__ = (
        Index("idx_referrers_daily_analytics", "daily_analytics_id"),
    )


class AnalyticsEvent(Base):
    """Derived annotation (spike, drop, milestone, streak) on a user's timeline.

    Not tied to a DailyAnalytics row: deleting the day keeps its events.
    """
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False)
    date = Column(Date, nullable=False)
    event_type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    value = Column(Float, nullable=False, default=0.0)
    # Milestone threshold for milestone events, empty for the other kinds.
    dedupe_key = Column(String(32), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "user_id", "date", "event_type", "dedupe_key", name="uq_events_user_date_type_key"
        ),
        CheckConstraint(
            "event_type IN ('spike', 'drop', 'milestone', 'streak')",
            name="valid_event_type",
        ),
        Index("idx_events_user_date", "user_id", "date"),
    )
