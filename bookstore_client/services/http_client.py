import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from bookstore_client.config import settings
from bookstore_client.errors import (
    Err,
    ErrorKind,
    Ok,
    Result,
    TransportError,
    kind_for_status,
    message_for_status,
)

logger = logging.getLogger(__name__)

# HTTP/2 is only enabled when the 'h2' package is installed
try:
    import h2  # type: ignore  # noqa: F401
    _HTTP2_AVAILABLE = True
except ImportError:
    _HTTP2_AVAILABLE = False
    logger.debug("HTTP/2 disabled: 'h2' package not installed.")


RefreshFunction = Callable[[], Awaitable[Optional[str]]]

STANDARD_HEADERS: Dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}


def build_headers(token: Optional[str] = None) -> Dict[str, str]:
    headers = dict(STANDARD_HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


class AuthenticatedHTTPClient:
    """Pooled HTTP client that adds bearer auth and recovers once from an expired token.

    Every verb goes through ``request``. When a call that carried a token comes
    back 401 and a refresh function is registered, the refresh function is
    awaited once; if it yields a new token the identical request is reissued
    with it and that second response is returned whatever its status. There is
    never more than one retry per call.
    """

    def __init__(self, base_url: Optional[str] = None, refresh: Optional[RefreshFunction] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: Optional[httpx.Timeout] = None):
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self._refresh = refresh

        limits = httpx.Limits(
            max_keepalive_connections=settings.max_keepalive_connections,
            max_connections=settings.max_connections,
            keepalive_expiry=settings.keepalive_expiry
        )

        if timeout is None:
            timeout = httpx.Timeout(
                timeout=settings.http_timeout,
                connect=settings.connect_timeout
            )

        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "limits": limits,
            "timeout": timeout,
            "follow_redirects": True,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["http2"] = _HTTP2_AVAILABLE

        self._client = httpx.AsyncClient(**client_kwargs)

    @property
    def has_refresh(self) -> bool:
        return self._refresh is not None

    def set_refresh(self, refresh: Optional[RefreshFunction]) -> None:
        """Register (or with None, unregister) the token refresh capability."""
        self._refresh = refresh

    # ------------------------- Verbs ------------------------- #
    async def get(self, path: str, params: Optional[Dict[str, Any]] = None,
                  token: Optional[str] = None) -> httpx.Response:
        return await self.request("GET", path, params=params, token=token)

    async def post(self, path: str, body: Optional[Any] = None, params: Optional[Dict[str, Any]] = None,
                   token: Optional[str] = None) -> httpx.Response:
        return await self.request("POST", path, params=params, body=body, token=token)

    async def put(self, path: str, body: Optional[Any] = None, params: Optional[Dict[str, Any]] = None,
                  token: Optional[str] = None) -> httpx.Response:
        return await self.request("PUT", path, params=params, body=body, token=token)

    async def patch(self, path: str, body: Optional[Any] = None, params: Optional[Dict[str, Any]] = None,
                    token: Optional[str] = None) -> httpx.Response:
        return await self.request("PATCH", path, params=params, body=body, token=token)

    async def delete(self, path: str, body: Optional[Any] = None, params: Optional[Dict[str, Any]] = None,
                     token: Optional[str] = None) -> httpx.Response:
        return await self.request("DELETE", path, params=params, body=body, token=token)

    async def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                      body: Optional[Any] = None, token: Optional[str] = None) -> httpx.Response:
        """Send a request, retrying exactly once with a refreshed token on 401."""
        response = await self._send(method, path, params, body, token)

        if response.status_code == 401 and token and self._refresh is not None:
            logger.info(f"Received 401 for {method} {path}, attempting token refresh")
            new_token = await self._try_refresh()
            if new_token:
                logger.info(f"Token refreshed, retrying {method} {path}")
                response = await self._send(method, path, params, body, new_token)
            else:
                logger.info(f"Token refresh failed, returning original 401 for {method} {path}")

        return response

    async def _send(self, method: str, path: str, params: Optional[Dict[str, Any]],
                    body: Optional[Any], token: Optional[str]) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=body,
                headers=build_headers(token)
            )
        except httpx.RequestError as exc:
            logger.warning(f"{method} {path} failed: {exc!r}")
            raise TransportError(f"Could not reach the server: {exc}") from exc

        logger.debug(f"{method} {response.request.url} -> {response.status_code}")
        return response

    async def _try_refresh(self) -> Optional[str]:
        try:
            return await self._refresh()
        except Exception as exc:
            logger.warning(f"Token refresh raised {exc!r}; treating as refresh failure")
            return None

    # ------------------------- Decoding ------------------------- #
    @staticmethod
    def decode(response: httpx.Response) -> Result:
        """Turn a response into Ok(payload) or Err(kind, message); never raises."""
        status = response.status_code

        if is_success(response):
            if not response.content.strip():
                return Ok(None)
            try:
                return Ok(response.json())
            except ValueError:
                logger.warning(f"Invalid JSON in {status} response")
                return Err(ErrorKind.DECODE, "Invalid JSON response", status, response.text)

        try:
            data = response.json()
        except ValueError:
            data = None

        return Err(
            kind_for_status(status),
            message_for_status(status, data),
            status,
            data if data is not None else (response.text or None)
        )

    async def check_connectivity(self) -> bool:
        """True if the backend answers at all; 401 and 405 still mean reachable."""
        try:
            response = await self._send("GET", "/login/", None, None, None)
        except TransportError:
            return False
        return response.status_code in (200, 401, 405)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
