"""Connected Google Analytics account endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, require_user
from app.core.database import get_db
from app.core.errors import (
    AccountNotConnectedError,
    AnalyticsSyncError,
    CredentialExpiredError,
    PersistenceError,
    http_status_for,
)
from app.models.models import GaAccount
from app.services.credentials import (
    credential_for,
    ensure_fresh_credential,
    get_ga_account,
    refresh_and_store,
    save_ga_account,
)
from app.services.ga_admin import list_ga_properties
from app.services.ga_client import Credential

router = APIRouter()
logger = logging.getLogger(__name__)


class GaAccountRequest(BaseModel):
    property_id: str
    access_token: str
    refresh_token: Optional[str] = None
    account_id: Optional[str] = None
    website_url: Optional[str] = None
    token_expiry: Optional[datetime] = None
    data_consent: bool = True


class GaAccountResponse(BaseModel):
    user_id: str
    ga_account_id: Optional[str]
    ga_property_id: str
    website_url: Optional[str]
    token_expiry: Optional[str]
    has_refresh_token: bool
    updated_at: Optional[str]


class PropertyDiscoveryRequest(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    account_id: Optional[str] = None


def _to_response(account: GaAccount) -> GaAccountResponse:
    return GaAccountResponse(
        user_id=account.user_id,
        ga_account_id=account.ga_account_id,
        ga_property_id=account.ga_property_id,
        website_url=account.website_url,
        token_expiry=account.token_expiry.isoformat() if account.token_expiry else None,
        has_refresh_token=bool(account.refresh_token),
        updated_at=account.updated_at.isoformat() if account.updated_at else None,
    )


@router.get("/ga", response_model=GaAccountResponse)
def get_connected_account(
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    try:
        account = get_ga_account(db, user.user_id)
    except AccountNotConnectedError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _to_response(account)


@router.put("/ga", response_model=GaAccountResponse)
def connect_account(
    payload: GaAccountRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    """Store the property and tokens handed over by the OAuth callback."""
    try:
        account = save_ga_account(db, user.user_id, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except PersistenceError as e:
        logger.error("Failed to store GA account for user %s: %s", user.user_id, e)
        raise HTTPException(status_code=500, detail="Failed to store GA account") from e
    logger.info("Connected GA property %s for user %s", account.ga_property_id, user.user_id)
    return _to_response(account)


def _properties_payload(properties) -> dict:
    return {"properties": [prop.to_dict() for prop in properties]}


@router.get("/ga/properties")
async def list_connected_properties(
    account_id: Optional[str] = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_user),
):
    """Properties readable with the stored tokens, for switching the connected property."""
    try:
        account = get_ga_account(db, user.user_id)
        original = credential_for(account)
        credential = ensure_fresh_credential(db, account)
        try:
            properties = await list_ga_properties(credential, account_id)
        except CredentialExpiredError:
            if credential != original:
                raise
            credential = refresh_and_store(db, account)
            properties = await list_ga_properties(credential, account_id)
    except AnalyticsSyncError as e:
        logger.error("Failed to list GA properties for user %s: %s", user.user_id, e)
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from e
    return _properties_payload(properties)


@router.post("/ga/properties")
async def discover_properties(
    payload: PropertyDiscoveryRequest,
    user: AuthUser = Depends(require_user),
):
    """Properties readable with freshly granted OAuth tokens, before any account is stored."""
    access_token = payload.access_token.strip()
    if not access_token:
        raise HTTPException(status_code=400, detail="access_token is required")
    credential = Credential(access_token=access_token, refresh_token=payload.refresh_token or None)
    try:
        properties = await list_ga_properties(credential, payload.account_id)
    except AnalyticsSyncError as e:
        logger.error("Failed to discover GA properties for user %s: %s", user.user_id, e)
        raise HTTPException(status_code=http_status_for(e), detail=str(e)) from e
    return _properties_payload(properties)
