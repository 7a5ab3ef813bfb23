import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

import typer

from bookstore_client.config import settings
from bookstore_client.errors import BookstoreAPIError
from bookstore_client.notifications import NotificationStore
from bookstore_client.services.auth_service import Session, TokenRefresher
from bookstore_client.services.http_client import AuthenticatedHTTPClient
from bookstore_client.services.notifications_api import NotificationsAPI
from bookstore_client.ui_helpers import (
    print_message,
    print_notifications,
    print_unread_count,
    set_output_mode,
)

APP_NAME = "Bookstore Notifications CLI"


def build_store() -> Tuple[AuthenticatedHTTPClient, NotificationStore]:
    """Wire session, gateway, refresher and store from settings."""
    session = Session.from_settings()
    client = AuthenticatedHTTPClient(settings.api_url)
    client.set_refresh(TokenRefresher(client, session))
    store = NotificationStore(NotificationsAPI(client, session))
    store.bind_session(session)
    return client, store


def _run(operation: Callable[[NotificationStore], Awaitable[Any]]) -> Any:
    """Run one store operation on a fresh event loop and close the client afterwards."""
    async def runner() -> Any:
        client, store = build_store()
        try:
            return await operation(store)
        finally:
            await client.aclose()

    try:
        return asyncio.run(runner())
    except (BookstoreAPIError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)


# --- Typer CLI ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log HTTP traffic and state changes"),
):
    """Global CLI options (output mode, logging)."""
    if output:
        set_output_mode(output)
    level = logging.DEBUG if verbose or settings.debug else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command("list")
def cli_list(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Search text"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Filter by notification type"),
    unread_only: bool = typer.Option(False, "--unread-only", "-u", help="Only unread notifications"),
):
    """List notifications."""
    is_read = False if unread_only else None
    notifications = _run(lambda store: store.fetch(search=search, category=category, is_read=is_read))
    print_notifications(notifications)


@app.command("unread-count")
def cli_unread_count():
    """Show the unread notification count."""
    count = _run(lambda store: store.refresh_unread_count())
    print_unread_count(count)


@app.command("mark-read")
def cli_mark_read(notification_id: str = typer.Argument(..., help="Notification ID")):
    """Mark one notification as read."""
    _run(lambda store: store.mark_as_read(notification_id))
    print_message(f"Notification {notification_id} marked as read.",
                  {"id": notification_id, "is_read": True})


@app.command("mark-all-read")
def cli_mark_all_read():
    """Mark every notification as read."""
    async def operation(store: NotificationStore) -> int:
        await store.fetch()
        await store.mark_all_as_read()
        return len(store.notifications)

    total = _run(operation)
    print_message(f"All notifications marked as read ({total}).", {"marked": total})


@app.command("delete")
def cli_delete(notification_id: str = typer.Argument(..., help="Notification ID")):
    """Delete one notification."""
    _run(lambda store: store.delete(notification_id))
    print_message(f"Notification {notification_id} deleted.", {"id": notification_id, "deleted": True})


@app.command("delete-all")
def cli_delete_all(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete every notification."""
    if not yes and not typer.confirm("Delete all notifications?"):
        print("Cancelled.")
        return
    _run(lambda store: store.delete_all())
    print_message("All notifications deleted.", {"deleted": True})


@app.command("ping")
def cli_ping():
    """Check that the backend is reachable."""
    async def check() -> bool:
        client, _ = build_store()
        async with client:
            return await client.check_connectivity()

    if asyncio.run(check()):
        print(f"API reachable at {settings.api_url}")
    else:
        print(f"API unreachable at {settings.api_url}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
