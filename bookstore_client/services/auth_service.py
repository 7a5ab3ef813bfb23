"""
Session state and token refresh for the bookstore client.

The Session holds the credentials the hosting application signed in with.
TokenRefresher is the refresh capability handed to AuthenticatedHTTPClient: it
trades the refresh token for a new access token at ``/token/refresh/``.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from jose import jwt, JWTError

from bookstore_client.config import settings
from bookstore_client.services.http_client import AuthenticatedHTTPClient

logger = logging.getLogger(__name__)

REFRESH_PATH = "/token/refresh/"


# ------------------------- JWT helpers ------------------------- #
def decode_claims(token: str) -> Optional[Dict[str, Any]]:
    """Read the JWT payload without verifying the signature; None if it is not a JWT."""
    if not token:
        return None
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.debug(f"Could not decode token claims: {e}")
        return None


def seconds_until_expiry(token: str) -> Optional[float]:
    claims = decode_claims(token)
    if not claims:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return exp - time.time()


def is_token_expired(token: str, leeway: Optional[int] = None) -> bool:
    """Malformed tokens and tokens without ``exp`` count as expired."""
    if leeway is None:
        leeway = settings.token_expiry_leeway_seconds
    remaining = seconds_until_expiry(token)
    if remaining is None:
        return True
    return remaining <= leeway


# ------------------------- Session ------------------------- #
class Session:
    """Credentials of the signed-in user, replaceable at any time."""

    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._identity_listeners: List[Callable[[], None]] = []

    @classmethod
    def from_settings(cls) -> "Session":
        return cls(access_token=settings.access_token, refresh_token=settings.refresh_token)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def sign_in(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        logger.info("Session signed in")
        self._notify_identity_changed()

    def sign_out(self) -> None:
        self.access_token = None
        self.refresh_token = None
        logger.info("Session signed out")
        self._notify_identity_changed()

    def update_access_token(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Replace tokens after a refresh; the user stays the same so listeners are not told."""
        self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token

    def add_identity_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._identity_listeners.append(listener)

        def remove() -> None:
            if listener in self._identity_listeners:
                self._identity_listeners.remove(listener)

        return remove

    def _notify_identity_changed(self) -> None:
        for listener in list(self._identity_listeners):
            listener()


# ------------------------- Refresh ------------------------- #
class TokenRefresher:
    """Async callable that returns a fresh access token, or None when refresh is impossible."""

    def __init__(self, client: AuthenticatedHTTPClient, session: Session):
        self.client = client
        self.session = session
        self._lock = asyncio.Lock()

    async def __call__(self) -> Optional[str]:
        stale_token = self.session.access_token
        async with self._lock:
            # Another caller refreshed while we waited
            if self.session.access_token and self.session.access_token != stale_token:
                return self.session.access_token
            return await self._refresh()

    async def _refresh(self) -> Optional[str]:
        refresh_token = self.session.refresh_token
        if not refresh_token:
            logger.info("No refresh token available")
            return None

        if decode_claims(refresh_token) is not None and is_token_expired(refresh_token, leeway=0):
            logger.info("Refresh token is expired")
            return None

        # Sent without a bearer token so the gateway never recurses into refresh
        response = await self.client.post(REFRESH_PATH, body={"refresh": refresh_token})
        result = self.client.decode(response)
        if not result.ok:
            logger.info(f"Token refresh failed with status {response.status_code}: {result.message}")
            return None

        data = result.data if isinstance(result.data, dict) else {}
        new_access = data.get("access") or data.get("access_token")
        if not isinstance(new_access, str) or not new_access:
            logger.info("Token refresh failed: no access token in response")
            return None

        new_refresh = data.get("refresh") or data.get("refresh_token")
        self.session.update_access_token(new_access, new_refresh if isinstance(new_refresh, str) else None)
        logger.info("Access token refreshed")
        return new_access
