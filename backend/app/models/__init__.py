"""Database models."""
from app.models.models import (
    AnalyticsEvent,
    DailyAnalytics,
    GaAccount,
    Referrer,
    TopPage,
)

__all__ = [
    "AnalyticsEvent",
    "DailyAnalytics",
    "GaAccount",
    "Referrer",
    "TopPage",
]
