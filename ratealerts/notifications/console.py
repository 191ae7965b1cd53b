"""Terminal notifier using rich panels."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel

from ratealerts.errors import PermissionDeniedError
from ratealerts.notifications.base import BaseNotifier


class ConsoleNotifier(BaseNotifier):
    """Prints notifications as panels on the terminal.

    With ``allowed=False`` it behaves like a notification center the user
    has not granted permission to.
    """

    def __init__(self, console: Optional[Console] = None, allowed: bool = True):
        self.console = console or Console()
        self.allowed = allowed
        self.badge = 0

    def show(self, title: str, body: str) -> None:
        if not self.allowed:
            raise PermissionDeniedError("notifications are disabled")
        self.console.print(Panel(
            body,
            title=f"[bold yellow]{title}[/bold yellow]",
            border_style="yellow",
        ))

    def set_badge(self, count: int) -> None:
        if count != self.badge:
            self.console.print(f"[dim]Triggered alerts: {count}[/dim]")
        self.badge = count
