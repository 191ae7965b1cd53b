"""Rate checking and live stream commands for the ratealerts CLI."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
import toml
from rich.console import Console
from rich.table import Table

from ratealerts.config import DEFAULT_CONFIG_PATH, Settings, load_settings, save_stream_enabled
from ratealerts.logging_config import setup_logging
from ratealerts.notifications.dispatcher import format_notification_body
from ratealerts.service import AlertService

console = Console()
logger = logging.getLogger(__name__)


def _config_path(ctx: click.Context) -> Path:
    return (ctx.obj.get("config_path") if ctx.obj else None) or DEFAULT_CONFIG_PATH


def _load(ctx: click.Context, log_level: Optional[str]) -> Settings:
    settings = load_settings(_config_path(ctx))
    setup_logging(log_level or settings.logging.level)
    return settings


@click.command("check")
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def check(ctx: click.Context, log_level: Optional[str]) -> None:
    """Fetch rates once and evaluate all active alerts."""
    service = AlertService(_load(ctx, log_level))

    if not service.store.get_all():
        console.print("[dim]No alerts to check[/dim]")
        return

    events = asyncio.run(service.check_now())
    if not events:
        console.print("[green]No alerts triggered[/green]")
        return

    table = Table(title="Triggered Alerts", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Alert")
    for event in events:
        table.add_row(event.alert_id, format_notification_body(event))
    console.print(table)


@click.command("watch")
@click.option(
    "--background", is_flag=True,
    help="Run in background mode: coarse scheduled checks only, no live stream.",
)
@click.option("--log-level", default=None, help="Override the configured log level.")
@click.pass_context
def watch(ctx: click.Context, background: bool, log_level: Optional[str]) -> None:
    """Watch rates and notify when alerts trigger.

    In the default foreground mode rates are polled on a timer and crypto
    prices are streamed live. Press Ctrl+C to stop.

    \b
    Examples:
      ratealerts watch
      ratealerts watch --background
    """
    settings = _load(ctx, log_level)
    service = AlertService(settings, config_path=_config_path(ctx))
    mode = "background" if background else "foreground"
    console.print(f"[bold]Watching alerts in {mode} mode[/bold] [dim](Ctrl+C to stop)[/dim]")

    try:
        asyncio.run(service.run_forever(background=background))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
        logger.info("Feed stats: %s", service.live_feed.stats.to_dict())


@click.command("stream")
@click.argument("state", type=click.Choice(["on", "off"], case_sensitive=False))
@click.pass_context
def stream(ctx: click.Context, state: str) -> None:
    """Switch the live crypto price stream on or off.

    A running `ratealerts watch` picks up the change after its next
    refresh. Switched off, crypto alerts are still checked by polling.

    \b
    Examples:
      ratealerts stream off
      ratealerts stream on
    """
    enabled = state.lower() == "on"
    try:
        path = save_stream_enabled(enabled, _config_path(ctx))
    except (toml.TomlDecodeError, OSError) as e:
        console.print(f"[red]Could not update config: {e}[/red]")
        raise SystemExit(1)

    label = "[green]on[/green]" if enabled else "[yellow]off[/yellow]"
    console.print(f"Live stream {label} [dim]({path})[/dim]")
