import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest

from bookstore_client.notifications import NotificationStore
from bookstore_client.services.auth_service import Session, TokenRefresher
from bookstore_client.services.http_client import AuthenticatedHTTPClient
from bookstore_client.services.notifications_api import NotificationsAPI
from bookstore_client.ui_helpers import OUTPUT_MODE_ENV

BASE_URL = "http://bookstore.test/api"


class FakeBackend:
    """In-memory stand-in for the bookstore REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.notifications: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.valid_tokens: Set[str] = {"good-token"}
        self.refresh_token = "refresh-token"
        self.issued_token = "fresh-token"
        # ids the list endpoint keeps reporting as unread (lagging replica)
        self.stale_unread_ids: Set[str] = set()
        self.unread_count_override: Optional[int] = None
        # (method, path) -> exception to raise or response to return
        self.failures: Dict[Tuple[str, str], Any] = {}
        # called with the request before it is handled
        self.on_request: Optional[Callable[[httpx.Request], None]] = None

    def add(self, notification_id, title: str = None, read: bool = False, category: str = "info") -> None:
        nid = str(notification_id)
        self.notifications[nid] = {
            "id": int(nid) if nid.isdigit() else nid,
            "title": title or f"Notification {nid}",
            "message": f"Message {nid}",
            "notification_type": category,
            "is_read": read,
            "created_at": "2024-05-01T10:00:00Z",
            "data": {"order_id": nid},
        }

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == "/api" + path]

    def _listed(self, item: Dict[str, Any]) -> Dict[str, Any]:
        copy = dict(item)
        if str(item["id"]) in self.stale_unread_ids:
            copy["is_read"] = False
        return copy

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request:
            self.on_request(request)

        path = request.url.path
        assert path.startswith("/api/"), path
        path = path[len("/api"):]
        method = request.method

        failure = self.failures.get((method, path))
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, httpx.Response):
            return failure

        if path == "/login/":
            return httpx.Response(405, json={"detail": "Method not allowed"})

        if path == "/token/refresh/" and method == "POST":
            body = json.loads(request.content or b"{}")
            if body.get("refresh") != self.refresh_token:
                return httpx.Response(401, json={"detail": "Token is invalid or expired"})
            self.valid_tokens.add(self.issued_token)
            return httpx.Response(200, json={"access": self.issued_token})

        auth = request.headers.get("Authorization", "")
        if auth.replace("Bearer ", "", 1) not in self.valid_tokens:
            return httpx.Response(401, json={"detail": "Given token not valid for any token type"})

        if path == "/notifications/" and method == "GET":
            items = [self._listed(n) for n in self.notifications.values()]
            category = request.url.params.get("notification_type")
            if category:
                items = [n for n in items if n["notification_type"] == category]
            is_read = request.url.params.get("is_read")
            if is_read is not None:
                items = [n for n in items if n["is_read"] == (is_read == "true")]
            return httpx.Response(200, json={"success": True, "data": items})

        if path == "/notifications/unread_count/" and method == "GET":
            count = self.unread_count_override
            if count is None:
                count = sum(1 for n in self.notifications.values() if not n["is_read"])
            return httpx.Response(200, json={"unread_count": count})

        if path == "/notifications/mark_all_as_read/" and method == "POST":
            for n in self.notifications.values():
                n["is_read"] = True
            return httpx.Response(200, json={"success": True})

        if path == "/notifications/delete_all/" and method == "DELETE":
            deleted = len(self.notifications)
            self.notifications.clear()
            return httpx.Response(200, json={"deleted_count": deleted})

        parts = [p for p in path.split("/") if p]
        if len(parts) >= 2 and parts[0] == "notifications":
            nid = parts[1]
            if nid not in self.notifications:
                return httpx.Response(404, json={"detail": "Not found."})
            if len(parts) == 3 and parts[2] == "mark_as_read" and method == "POST":
                self.notifications[nid]["is_read"] = True
                return httpx.Response(200, json=self.notifications[nid])
            if len(parts) == 2 and method == "DELETE":
                del self.notifications[nid]
                return httpx.Response(204)

        return httpx.Response(404, json={"detail": "Not found."})


def make_client(backend: FakeBackend, session: Session, with_refresh: bool = True) -> AuthenticatedHTTPClient:
    client = AuthenticatedHTTPClient(BASE_URL, transport=httpx.MockTransport(backend.handler))
    if with_refresh:
        client.set_refresh(TokenRefresher(client, session))
    return client


def make_store(backend: FakeBackend, session: Session) -> Tuple[AuthenticatedHTTPClient, NotificationStore]:
    client = make_client(backend, session)
    store = NotificationStore(NotificationsAPI(client, session))
    store.bind_session(session)
    return client, store


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def session():
    return Session(access_token="good-token", refresh_token="refresh-token")


@pytest.fixture
def client(backend, session):
    client = make_client(backend, session)
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def store(backend, session):
    client, store = make_store(backend, session)
    yield store
    asyncio.run(client.aclose())


@pytest.fixture
def scripted():
    """Factory for a gateway whose transport replays a fixed list of responses."""
    clients = []

    def factory(responses, refresh=None):
        calls: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            item = responses[min(len(calls), len(responses)) - 1]
            if isinstance(item, Exception):
                raise item
            return item

        client = AuthenticatedHTTPClient(BASE_URL, refresh=refresh, transport=httpx.MockTransport(handler))
        clients.append(client)
        return client, calls

    yield factory
    for c in clients:
        asyncio.run(c.aclose())


@pytest.fixture
def cli_backend(backend, monkeypatch):
    """Point the CLI at the fake backend and reset the output mode."""
    def fake_build_store():
        return make_store(backend, Session(access_token="good-token", refresh_token="refresh-token"))

    monkeypatch.setattr("bookstore_client.main.build_store", fake_build_store)
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    return backend
