"""Bling integration routes.

Implements:
- GET/POST/DELETE /bling/integration - client credentials and cursor
- POST /bling/integration/initial-order - order-number cursor
- GET /bling/authorize, /bling/authorize-url - start the OAuth flow
- GET /bling/callback - OAuth callback, redirects to the frontend
- GET /bling/status - token state
- POST /bling/refresh, /bling/deactivate, /bling/set-tokens, /bling/test

Security:
- The `state` parameter is a single-use nonce with a 10 minute lifetime
- Client secrets are never returned, only whether one is held
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from api.dependencies import get_app_settings, get_bling_client, get_token_manager
from connectors.bling.bling_auth import TokenManager
from connectors.bling.bling_client import BlingApiClient
from core.config import Settings
from core.errors import IntegrationError
from core.observability import get_logger

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class IntegrationConfigRequest(BaseModel):
    """Client credentials issued by Bling for this application."""
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    initial_order_number: Optional[int] = Field(
        None,
        ge=1,
        description="Orders numbered below this are ignored by generate",
    )


class InitialOrderRequest(BaseModel):
    initial_order_number: Optional[int] = Field(None, ge=1)


class IntegrationStatus(BaseModel):
    configured: bool
    is_active: bool
    client_id: Optional[str] = None
    has_client_secret: bool = False
    initial_order_number: Optional[int] = None
    token_expires_at: Optional[str] = None


class SetTokensRequest(BaseModel):
    """Token pair obtained outside the authorization flow."""
    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    expires_in: Optional[int] = Field(None, gt=0, description="Seconds until the access token expires")
    token_type: str = "Bearer"
    scope: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool
    message: str


class AuthorizeUrlResponse(BaseModel):
    authorization_url: str


# =============================================================================
# Integration configuration
# =============================================================================

@router.get("/integration", response_model=IntegrationStatus)
async def get_integration(tokens: TokenManager = Depends(get_token_manager)):
    return IntegrationStatus(**await tokens.status())


@router.post("/integration", response_model=IntegrationStatus)
async def save_integration(
    request: IntegrationConfigRequest,
    tokens: TokenManager = Depends(get_token_manager),
):
    """Save the Bling client id/secret. Existing tokens are kept."""
    await tokens.configure(request.client_id, request.client_secret, request.initial_order_number)
    return IntegrationStatus(**await tokens.status())


@router.delete("/integration", response_model=ActionResponse)
async def delete_integration(tokens: TokenManager = Depends(get_token_manager)):
    removed = await tokens.remove()
    return ActionResponse(
        success=removed,
        message="Integration removed" if removed else "No integration configured",
    )


@router.post("/integration/initial-order", response_model=IntegrationStatus)
async def set_initial_order(
    request: InitialOrderRequest,
    tokens: TokenManager = Depends(get_token_manager),
):
    await tokens.set_initial_order_number(request.initial_order_number)
    return IntegrationStatus(**await tokens.status())


# =============================================================================
# OAuth flow
# =============================================================================

@router.get("/authorize")
async def authorize(tokens: TokenManager = Depends(get_token_manager)):
    """Redirect the browser to the Bling consent page."""
    return RedirectResponse(url=await tokens.begin_authorization(), status_code=302)


@router.get("/authorize-url", response_model=AuthorizeUrlResponse)
async def authorize_url(tokens: TokenManager = Depends(get_token_manager)):
    return AuthorizeUrlResponse(authorization_url=await tokens.begin_authorization())


def _frontend_redirect(settings: Settings, **params: str) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}/settings?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=302)


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    tokens: TokenManager = Depends(get_token_manager),
    settings: Settings = Depends(get_app_settings),
):
    """OAuth callback endpoint.

    Bling redirects here after the user grants access. The outcome is
    reported to the frontend through query parameters.
    """
    if error:
        logger.warning(f"Bling authorization denied: {error}")
        return _frontend_redirect(settings, bling="error", message=error_description or error)

    if not code or not state:
        return _frontend_redirect(settings, bling="error", message="Missing code or state parameter")

    try:
        await tokens.exchange(code, state)
    except IntegrationError as e:
        logger.error(f"Bling authorization failed: {e.message}")
        return _frontend_redirect(settings, bling="error", message=e.message)

    return _frontend_redirect(settings, bling="success")


# =============================================================================
# Token management
# =============================================================================

@router.get("/status")
async def token_status(tokens: TokenManager = Depends(get_token_manager)) -> Dict[str, Any]:
    return await tokens.token_info()


@router.post("/refresh")
async def refresh_token(tokens: TokenManager = Depends(get_token_manager)) -> Dict[str, Any]:
    """Run the refresh grant now instead of waiting for expiry."""
    await tokens.refresh()
    return await tokens.token_info()


@router.post("/deactivate", response_model=ActionResponse)
async def deactivate(tokens: TokenManager = Depends(get_token_manager)):
    await tokens.deactivate()
    return ActionResponse(success=True, message="Integration deactivated")


@router.post("/set-tokens")
async def set_tokens(
    request: SetTokensRequest,
    tokens: TokenManager = Depends(get_token_manager),
) -> Dict[str, Any]:
    await tokens.set_tokens(
        access_token=request.access_token,
        refresh_token=request.refresh_token,
        expires_in=request.expires_in,
        token_type=request.token_type,
        scope=request.scope,
    )
    return await tokens.token_info()


@router.post("/test", response_model=ActionResponse)
async def test_connection(client: BlingApiClient = Depends(get_bling_client)):
    return ActionResponse(**await client.test_connection())
