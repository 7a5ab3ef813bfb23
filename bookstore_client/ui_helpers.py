import os
import json
from typing import Any, Dict, List
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from bookstore_client.notification import Notification

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKSTORE_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_notifications(notifications: List[Notification]) -> None:
    """Print notifications in the current output mode.
    - plain: '<id> - <title> [read|unread]' lines, or 'No notifications.'
    - json: JSON array of notification objects
    - rich: Rich table, unread rows in bold
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([n.to_dict() for n in notifications], ensure_ascii=False))
        return

    if not notifications:
        print("No notifications.")
        return

    if mode == "rich":
        table = Table(title="🔔 Notifications", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Type", style="dim")
        table.add_column("Title", style="white")
        table.add_column("Message", style="white")
        for n in notifications:
            style = None if n.is_read else "bold"
            table.add_row(n.id, n.category, n.title, n.message, style=style)
        _console.print(table)
    else:
        for n in notifications:
            state = "read" if n.is_read else "unread"
            print(f"{n.id} - {n.title} [{state}]")


def print_unread_count(count: int) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"unread_count": count}))
    elif mode == "rich":
        _console.print(Panel.fit(f"[bold]Unread:[/] {count}", title="🔔 Notifications", border_style="blue"))
    else:
        print(f"Unread notifications: {count}")


def print_message(message: str, payload: Dict[str, Any] = None) -> None:
    """Status line for mutating commands; JSON mode prints the payload instead."""
    if get_output_mode() == "json":
        print(json.dumps(payload or {"message": message}, ensure_ascii=False))
    else:
        print(message)
