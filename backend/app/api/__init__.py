"""API router exports."""
from app.api.accounts import router as accounts
from app.api.analytics import router as analytics
from app.api.cron import router as cron
