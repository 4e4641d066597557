"""OAuth 2.0 Authorization Code flow for Bling.

Implements the token lifecycle for the ERP connection:
- Authorization URL with a single-use anti-CSRF state nonce
- Code exchange and refresh-token grant (HTTP Basic client credentials)
- Proactive refresh 5 minutes before expiry
- Persistence through a CredentialStore (read back on restart)

Flow:
1. Admin clicks "Connect Bling"
2. begin_authorization() issues a nonce and returns the authorize URL
3. User approves access on bling.com.br
4. Bling redirects to the callback with `code` and `state`
5. exchange() verifies the state and trades the code for tokens
6. ensure_valid_token() hands out a bearer token, refreshing as needed

Usage:
    manager = TokenManager(BlingOAuthConfig.from_settings(settings), store)
    url = await manager.begin_authorization()
    # ... callback ...
    await manager.exchange(code, state)
    token = await manager.ensure_valid_token()
"""

import asyncio
import base64
import secrets
import urllib.parse
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import aiohttp

from core.config import Settings
from core.errors import (
    AuthenticationError,
    ConfigurationError,
    CsrfError,
    RemoteApiError,
    RemoteTimeoutError,
)
from core.observability.logging import get_logger
from core.security.credential_store import CredentialStore, IntegrationCredential

logger = get_logger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)
NONCE_TTL = timedelta(minutes=10)
TOKEN_TIMEOUT_SECONDS = 30
DEFAULT_EXPIRES_IN = 21600  # Bling access tokens live 6 hours


Clock = Callable[[], datetime]


class NonceRegistry:
    """Single-use OAuth state values indexed by expiry time.

    Expired entries are pruned whenever the registry is touched, so no
    timers are needed.
    """

    def __init__(self, ttl: timedelta = NONCE_TTL, clock: Clock = datetime.utcnow):
        self._ttl = ttl
        self._clock = clock
        self._expiry: Dict[str, datetime] = {}

    def __len__(self) -> int:
        self._prune()
        return len(self._expiry)

    def _prune(self) -> None:
        now = self._clock()
        for nonce in [n for n, exp in self._expiry.items() if exp <= now]:
            del self._expiry[nonce]

    def issue(self) -> str:
        self._prune()
        nonce = secrets.token_hex(16)
        self._expiry[nonce] = self._clock() + self._ttl
        return nonce

    def consume(self, nonce: Optional[str]) -> bool:
        """Return True and forget the nonce if it was issued and is still live."""
        self._prune()
        if not nonce or nonce not in self._expiry:
            return False
        del self._expiry[nonce]
        return True


@dataclass
class BlingOAuthConfig:
    """Endpoints plus fallback client credentials (used when none are stored).

    Bling redirects to the callback URL registered for the app; none is sent.
    """
    authorization_url: str = "https://www.bling.com.br/Api/v3/oauth/authorize"
    token_url: str = "https://www.bling.com.br/Api/v3/oauth/token"
    client_id: str = ""
    client_secret: str = ""
    timeout_seconds: float = TOKEN_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlingOAuthConfig":
        return cls(
            authorization_url=settings.authorization_url,
            token_url=settings.token_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
        )


class TokenManager:
    """Owns the Bling credential and hands out valid bearer tokens.

    The credential is cached in memory and mutated only through this class;
    every mutation replaces the token pair wholesale and is written to the
    store. Refresh and exchange run under one asyncio.Lock so concurrent
    callers that all see an expiring token trigger a single round trip.
    """

    def __init__(
        self,
        config: BlingOAuthConfig,
        store: CredentialStore,
        user_id: str = "default",
        nonces: Optional[NonceRegistry] = None,
        clock: Clock = datetime.utcnow,
    ):
        self.config = config
        self.user_id = user_id
        self._store = store
        self._clock = clock
        self._nonces = nonces or NonceRegistry(clock=clock)
        self._credential: Optional[IntegrationCredential] = None
        self._loaded = False
        self._lock = asyncio.Lock()

    # =========================================================================
    # Credential access
    # =========================================================================

    async def _load(self) -> Optional[IntegrationCredential]:
        if not self._loaded:
            self._credential = await self._store.get(self.user_id)
            self._loaded = True
        return self._credential

    async def _save(self, credential: IntegrationCredential) -> IntegrationCredential:
        credential = replace(credential, updated_at=self._clock())
        await self._store.put(credential)
        self._credential = credential
        self._loaded = True
        return credential

    async def _load_or_new(self) -> IntegrationCredential:
        credential = await self._load()
        if credential is None:
            now = self._clock()
            credential = IntegrationCredential(user_id=self.user_id, created_at=now, updated_at=now)
        return credential

    def _client_credentials(self, credential: Optional[IntegrationCredential]) -> tuple:
        client_id = (credential.client_id if credential else "") or self.config.client_id
        client_secret = (credential.client_secret if credential else "") or self.config.client_secret
        if not client_id or not client_secret:
            raise ConfigurationError("Bling client_id and client_secret are not configured")
        return client_id, client_secret

    async def get_credential(self) -> Optional[IntegrationCredential]:
        return await self._load()

    # =========================================================================
    # Token lifecycle
    # =========================================================================

    async def ensure_valid_token(self) -> str:
        """Return an access token valid for at least the next 5 minutes.

        Raises:
            AuthenticationError: No token held, or the refresh failed
        """
        credential = await self._load()
        if credential is None or not credential.access_token:
            raise AuthenticationError("No Bling access token; complete the authorization flow first")

        if not self._needs_refresh(credential):
            return credential.access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            credential = await self._load()
            if credential is None or not credential.access_token:
                raise AuthenticationError("No Bling access token; complete the authorization flow first")
            if self._needs_refresh(credential):
                logger.info("Access token expiring, refreshing")
                credential = await self._refresh_locked(credential)
            return credential.access_token

    def _needs_refresh(self, credential: IntegrationCredential) -> bool:
        return credential.is_access_expired(
            buffer_seconds=int(REFRESH_BUFFER.total_seconds()),
            now=self._clock(),
        )

    async def exchange(self, code: str, state: str) -> IntegrationCredential:
        """Trade an authorization code for tokens.

        Raises:
            CsrfError: state was never issued, expired or already used
            ConfigurationError: client credentials missing
            RemoteApiError / RemoteTimeoutError: token endpoint failure
        """
        if not self._nonces.consume(state):
            raise CsrfError("Invalid or expired OAuth state")
        if not code:
            raise AuthenticationError("No authorization code received")

        async with self._lock:
            credential = await self._load_or_new()
            token_data = await self._post_token_request(
                {"grant_type": "authorization_code", "code": code},
                credential,
            )
            credential = await self._save(self._apply_token_response(credential, token_data))

        logger.info("Bling authorization completed", extra_fields={"user_id": self.user_id})
        return credential

    async def refresh(self) -> IntegrationCredential:
        """Run the refresh-token grant now.

        Raises:
            AuthenticationError: no refresh token held, or Bling rejected it
        """
        async with self._lock:
            credential = await self._load()
            return await self._refresh_locked(credential)

    async def _refresh_locked(self, credential: Optional[IntegrationCredential]) -> IntegrationCredential:
        if credential is None or not credential.refresh_token:
            raise AuthenticationError("No refresh token available; authorize the integration again")

        try:
            token_data = await self._post_token_request(
                {"grant_type": "refresh_token", "refresh_token": credential.refresh_token},
                credential,
            )
        except RemoteApiError as e:
            if e.status_code in (400, 401, 403):
                raise AuthenticationError(f"Bling rejected the refresh token: {e.response_body or e}") from e
            raise

        credential = await self._save(self._apply_token_response(credential, token_data))
        logger.info("Bling access token refreshed")
        return credential

    async def set_tokens(
        self,
        access_token: str,
        refresh_token: str,
        expires_in: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        token_type: str = "Bearer",
        scope: Optional[str] = None,
    ) -> IntegrationCredential:
        """Install a token pair obtained out of band."""
        if not access_token or not refresh_token:
            raise AuthenticationError("access_token and refresh_token are required")

        if expires_at is None:
            expires_at = self._clock() + timedelta(seconds=expires_in or DEFAULT_EXPIRES_IN)

        async with self._lock:
            credential = await self._load_or_new()
            credential = replace(
                credential,
                access_token=access_token,
                refresh_token=refresh_token,
                token_type=token_type or "Bearer",
                scope=scope,
                expires_at=expires_at,
                is_active=True,
            )
            credential = await self._save(credential)

        logger.info("Bling tokens set manually")
        return credential

    async def clear(self) -> None:
        """Drop the token pair; client configuration is kept."""
        async with self._lock:
            credential = await self._load()
            if credential is None:
                return
            await self._save(credential.without_tokens())
        logger.info("Bling tokens cleared")

    async def deactivate(self) -> None:
        await self.clear()

    def _apply_token_response(
        self,
        credential: IntegrationCredential,
        token_data: Dict[str, Any],
    ) -> IntegrationCredential:
        access_token = token_data.get("access_token")
        if not access_token:
            raise RemoteApiError("Token response did not include an access_token", 200, str(token_data))

        expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN)
        return replace(
            credential,
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            token_type=token_data.get("token_type") or "Bearer",
            scope=token_data.get("scope"),
            expires_at=self._clock() + timedelta(seconds=expires_in),
            is_active=True,
        )

    async def _post_token_request(
        self,
        data: Dict[str, str],
        credential: Optional[IntegrationCredential],
    ) -> Dict[str, Any]:
        """POST to the token endpoint with HTTP Basic client credentials."""
        client_id, client_secret = self._client_credentials(credential)
        basic = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "1.0",
            "Authorization": f"Basic {basic}",
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)

        logger.debug(f"POST {self.config.token_url} grant_type={data.get('grant_type')}")
        try:
            async with aiohttp.ClientSession(timeout=timeout) as http:
                async with http.post(self.config.token_url, data=data, headers=headers) as response:
                    body = await response.text()
                    if response.status >= 400:
                        logger.error(f"Token request failed: {response.status} - {body}")
                        raise RemoteApiError(
                            f"Bling token endpoint returned {response.status}",
                            response.status,
                            body,
                        )
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RemoteTimeoutError(
                f"Bling token endpoint did not respond within {self.config.timeout_seconds}s",
                self.config.timeout_seconds,
            ) from e
        except aiohttp.ClientError as e:
            raise RemoteApiError(f"Bling token request failed: {e}") from e

    # =========================================================================
    # Integration configuration
    # =========================================================================

    async def begin_authorization(self) -> str:
        """Return the Bling authorize URL carrying a fresh state nonce."""
        credential = await self._load()
        client_id, _ = self._client_credentials(credential)
        params = {
            "response_type": "code",
            "client_id": client_id,
            "state": self._nonces.issue(),
        }
        return f"{self.config.authorization_url}?{urllib.parse.urlencode(params)}"

    async def configure(
        self,
        client_id: str,
        client_secret: str,
        initial_order_number: Optional[int] = None,
    ) -> IntegrationCredential:
        """Save client credentials; existing tokens are kept."""
        if not client_id or not client_secret:
            raise ConfigurationError("client_id and client_secret are required")

        async with self._lock:
            credential = await self._load_or_new()
            credential = replace(credential, client_id=client_id, client_secret=client_secret)
            if initial_order_number is not None:
                credential = replace(credential, initial_order_number=initial_order_number)
            return await self._save(credential)

    async def set_initial_order_number(self, order_number: Optional[int]) -> IntegrationCredential:
        if order_number is not None and order_number < 1:
            raise ConfigurationError("initial order number must be a positive integer")

        async with self._lock:
            credential = await self._load_or_new()
            return await self._save(replace(credential, initial_order_number=order_number))

    async def initial_order_number(self) -> Optional[int]:
        credential = await self._load()
        return credential.initial_order_number if credential else None

    async def remove(self) -> bool:
        """Delete the stored credential (configuration and tokens)."""
        async with self._lock:
            removed = await self._store.delete(self.user_id)
            self._credential = None
            self._loaded = True
        logger.info("Bling integration removed")
        return removed

    async def status(self) -> Dict[str, Any]:
        credential = await self._load()
        client_id = (credential.client_id if credential else "") or self.config.client_id
        client_secret = (credential.client_secret if credential else "") or self.config.client_secret
        expires_at = credential.expires_at if credential else None
        return {
            "configured": bool(client_id and client_secret),
            "is_active": bool(
                credential
                and credential.is_active
                and credential.access_token
                and expires_at
                and self._clock() < expires_at
            ),
            "client_id": client_id or None,
            "has_client_secret": bool(client_secret),
            "initial_order_number": credential.initial_order_number if credential else None,
            "token_expires_at": expires_at.isoformat() if expires_at else None,
        }

    async def token_info(self) -> Dict[str, Any]:
        credential = await self._load()
        if credential is None or not credential.access_token:
            return {"authenticated": False}

        now = self._clock()
        expires_at = credential.expires_at or now
        return {
            "authenticated": True,
            "token_type": credential.token_type,
            "scope": credential.scope,
            "expires_in": max(0, int((expires_at - now).total_seconds())),
            "is_expired": now >= expires_at,
            "expires_at": expires_at.isoformat(),
        }
