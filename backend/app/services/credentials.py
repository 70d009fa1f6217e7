"""Stored GA4 account credentials: lookup, refresh write-back and connection upserts."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import AccountNotConnectedError, PersistenceError
from app.core.time import ensure_utc, now_utc
from app.models.models import GaAccount
from app.services.ga_admin import strip_resource_prefix
from app.services.ga_client import Credential, refresh_credential

logger = logging.getLogger(__name__)

Refresher = Callable[[Credential], Credential]


def get_ga_account(db: Session, user_id: str) -> GaAccount:
    try:
        account = (
            db.query(GaAccount)
            .filter(GaAccount.user_id == user_id)
            .order_by(GaAccount.updated_at.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to load GA account: {exc}") from exc
    if not account:
        raise AccountNotConnectedError("Google Analytics account not found")
    return account


def credential_for(account: GaAccount) -> Credential:
    return Credential(
        access_token=account.access_token,
        refresh_token=account.refresh_token,
        expiry=ensure_utc(account.token_expiry),
    )


def store_refreshed_credential(db: Session, account: GaAccount, credential: Credential) -> None:
    account.access_token = credential.access_token
    if credential.refresh_token:
        account.refresh_token = credential.refresh_token
    account.token_expiry = credential.expiry
    account.updated_at = now_utc()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to store refreshed token: {exc}") from exc


def refresh_and_store(db: Session, account: GaAccount, *, refresher: Refresher | None = None) -> Credential:
    """Refresh the account's token and persist the new value."""
    refreshed = (refresher or refresh_credential)(credential_for(account))
    store_refreshed_credential(db, account, refreshed)
    logger.info("Refreshed GA access token for user %s", account.user_id)
    return refreshed


def ensure_fresh_credential(
    db: Session,
    account: GaAccount,
    *,
    refresher: Refresher | None = None,
    now: datetime | None = None,
) -> Credential:
    credential = credential_for(account)
    if not credential.is_expired(now):
        return credential
    logger.info("Access token for user %s expired, refreshing", account.user_id)
    return refresh_and_store(db, account, refresher=refresher)


def save_ga_account(db: Session, user_id: str, payload: dict[str, Any]) -> GaAccount:
    """Upsert the connected account after the external OAuth flow completed."""
    property_id = strip_resource_prefix(payload.get("property_id"), "properties/")
    if not property_id:
        raise ValueError("property_id is required")
    access_token = str(payload.get("access_token") or "").strip()
    if not access_token:
        raise ValueError("access_token is required")

    account = db.query(GaAccount).filter(GaAccount.user_id == user_id).first()
    if account is None:
        account = GaAccount(user_id=user_id)
        db.add(account)

    account.ga_account_id = strip_resource_prefix(payload.get("account_id"), "accounts/") or None
    account.ga_property_id = property_id
    account.website_url = payload.get("website_url") or None
    account.access_token = access_token
    refresh_token = str(payload.get("refresh_token") or "").strip()
    if refresh_token:
        account.refresh_token = refresh_token
    account.token_expiry = ensure_utc(payload.get("token_expiry"))
    account.data_consent = bool(payload.get("data_consent", True))
    account.updated_at = now_utc()

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to store GA account: {exc}") from exc
    db.refresh(account)
    return account


def list_connected_user_ids(db: Session) -> list[str]:
    rows = db.query(GaAccount.user_id).order_by(GaAccount.id.asc()).all()
    return [str(row.user_id) for row in rows]
