"""
eBay account linking
- authorization URL for the consent screen
- OAuth callback: code exchange, token storage, redirect to the settings page
- connection status
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from stockroom.api.deps import get_credential_store, get_current_user, get_ebay_client
from stockroom.ebay_client import EbayClient
from stockroom.models import User
from stockroom.services.credential_store import CredentialStore
from stockroom.services.exceptions import ServiceError, ValidationError
from stockroom.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/auth-url")
def get_auth_url(
    user: User = Depends(get_current_user),
    client: EbayClient = Depends(get_ebay_client),
):
    return {"authUrl": client.build_authorization_url()}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    client: EbayClient = Depends(get_ebay_client),
    credentials: CredentialStore = Depends(get_credential_store),
):
    """
    Exchanges the authorization code and always sends the browser back to
    the settings page with ``status=success`` or ``status=error``.
    """
    if not code:
        raise ValidationError("No authorization code provided", field="code")

    target = settings.credentials_settings_path
    try:
        grant = await client.exchange_code(code)
        credentials.store(user.id, grant.access_token, grant.refresh_token, grant.expires_in)
    except ServiceError as e:
        logger.error(f"eBay account linking failed for user {user.id}: {e.to_dict()}")
        return RedirectResponse(f"{target}?status=error", status_code=302)

    logger.info(f"eBay account linked for user {user.id}")
    return RedirectResponse(f"{target}?status=success", status_code=302)


@router.get("/status")
def get_status(
    user: User = Depends(get_current_user),
    credentials: CredentialStore = Depends(get_credential_store),
):
    connected, expires_at = credentials.status(user.id)
    return {
        "connected": connected,
        "expiresAt": expires_at.isoformat() if expires_at else None,
    }
