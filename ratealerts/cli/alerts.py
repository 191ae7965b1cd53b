"""Alert management commands for the ratealerts CLI.

Handles creating, listing, pausing, resetting and removing alerts.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ratealerts.errors import AlertNotFoundError
from ratealerts.models import Alert, AlertKind, AlertStatus, above, below

console = Console()

STATUS_STYLES = {
    AlertStatus.ACTIVE: "[green]● Active[/green]",
    AlertStatus.TRIGGERED: "[yellow]✓ Triggered[/yellow]",
    AlertStatus.PAUSED: "[dim]Ⅱ Paused[/dim]",
}


def _get_service(ctx: click.Context):
    """Build the alert service from the configured settings."""
    from ratealerts.config import load_settings
    from ratealerts.service import AlertService

    settings = load_settings(ctx.obj.get("config_path") if ctx.obj else None)
    return AlertService(settings)


def parse_value(value: str) -> Decimal:
    """Parse a positive threshold, keeping the digits the user typed.

    Raises:
        click.BadParameter: If the value is not a positive number.
    """
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"'{value}' is not a number", param_hint="VALUE")
    if not parsed.is_finite() or parsed <= 0:
        raise click.BadParameter("must be a positive number", param_hint="VALUE")
    return parsed


def build_condition(direction: str, value: Decimal):
    return above(float(value)) if direction == "above" else below(float(value))


def _error_panel(message: str) -> None:
    console.print(Panel(
        f"[red]{message}[/red]",
        title="[bold red]Error[/bold red]",
        border_style="red",
    ))


def _print_created(alert: Alert) -> None:
    auto_reset = (
        f"{alert.auto_reset_after_hours}h" if alert.auto_reset_after_hours else "off"
    )
    console.print(Panel(
        f"[bold green]Alert Created[/bold green]\n\n"
        f"ID:         {alert.id}\n"
        f"Pair:       {alert.pair_label}\n"
        f"Condition:  {alert.condition.display_name} {alert.target_value}\n"
        f"Auto-reset: {auto_reset}",
        title="[bold]New Alert[/bold]",
        border_style="green",
    ))


direction_choice = click.Choice(["above", "below"], case_sensitive=False)
auto_reset_option = click.option(
    "--auto-reset", "auto_reset",
    type=click.IntRange(min=1),
    default=None,
    help="Re-arm the alert this many hours after it triggers.",
)


@click.command("alert")
@click.argument("base")
@click.argument("target")
@click.argument("direction", type=direction_choice)
@click.argument("value")
@auto_reset_option
@click.pass_context
def create_alert(
    ctx: click.Context,
    base: str,
    target: str,
    direction: str,
    value: str,
    auto_reset: Optional[int],
) -> None:
    """Create a currency rate alert.

    Fires when the BASE -> TARGET rate is at or above (or at or below)
    VALUE.

    \b
    Examples:
      ratealerts alert USD ILS above 3.7
      ratealerts alert EUR USD below 1.05 --auto-reset 24
    """
    target_value = parse_value(value)
    direction = direction.lower()
    base, target = base.upper(), target.upper()
    if base == target:
        _error_panel("Base and target currency must differ")
        raise SystemExit(1)

    alert = Alert(
        kind=AlertKind.CURRENCY,
        base_currency=base,
        target_currency=target,
        condition=build_condition(direction, target_value),
        target_value=target_value,
        auto_reset_after_hours=auto_reset,
    )
    _get_service(ctx).add_alert(alert)
    _print_created(alert)


@click.command("crypto-alert")
@click.argument("symbol")
@click.argument("direction", type=direction_choice)
@click.argument("value")
@click.option("--id", "crypto_id", default=None, help="Provider coin ID (e.g. bitcoin).")
@auto_reset_option
@click.pass_context
def create_crypto_alert(
    ctx: click.Context,
    symbol: str,
    direction: str,
    value: str,
    crypto_id: Optional[str],
    auto_reset: Optional[int],
) -> None:
    """Create a crypto price alert quoted in USD.

    \b
    Examples:
      ratealerts crypto-alert BTC above 70000
      ratealerts crypto-alert ETH below 2500 --id ethereum
    """
    target_value = parse_value(value)
    symbol = symbol.upper()

    alert = Alert(
        kind=AlertKind.CRYPTO,
        base_currency=symbol,
        target_currency="USD",
        condition=build_condition(direction.lower(), target_value),
        target_value=target_value,
        auto_reset_after_hours=auto_reset,
        crypto_id=crypto_id,
        crypto_symbol=symbol,
    )
    _get_service(ctx).add_alert(alert)
    _print_created(alert)


@click.command("alerts")
@click.option(
    "--remove", "remove_id",
    default=None,
    help="Remove alert with specified ID.",
)
@click.pass_context
def list_alerts(ctx: click.Context, remove_id: Optional[str]) -> None:
    """Display or remove alerts.

    \b
    Examples:
      ratealerts alerts                    # List all alerts
      ratealerts alerts --remove 3f2a...   # Remove one alert
    """
    service = _get_service(ctx)

    if remove_id is not None:
        try:
            alert = service.store.get(remove_id)
            service.delete_alert(remove_id)
        except AlertNotFoundError as e:
            console.print(f"[yellow]{e}[/yellow]")
            return
        console.print(f"[green]✓ Removed alert {remove_id} ({alert.pair_label})[/green]")
        return

    alerts = service.store.get_all()
    if not alerts:
        console.print(Panel(
            "[dim]No alerts set. Use 'ratealerts alert BASE TARGET above|below VALUE' "
            "to create one.[/dim]",
            title="[bold]Alerts[/bold]",
            border_style="dim",
        ))
        return

    table = Table(
        title="Rate Alerts",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("ID", style="dim")
    table.add_column("Pair", style="bold")
    table.add_column("Condition")
    table.add_column("Auto-reset", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Status", justify="center")

    for alert in alerts:
        status = STATUS_STYLES[alert.status]
        if alert.triggered_at is not None and alert.status == AlertStatus.TRIGGERED:
            status += f"\n[dim]{alert.triggered_at.strftime('%Y-%m-%d %H:%M')}[/dim]"
        table.add_row(
            alert.id,
            alert.pair_label,
            f"{alert.condition.display_name} {alert.target_value}",
            f"{alert.auto_reset_after_hours}h" if alert.auto_reset_after_hours else "-",
            alert.created_at.strftime("%Y-%m-%d %H:%M"),
            status,
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(alerts)} alerts[/dim]")
    if not service.store.is_persistent:
        console.print("[yellow]Alert database unavailable; changes will not be saved[/yellow]")


@click.command("toggle")
@click.argument("alert_id")
@click.pass_context
def toggle_alert(ctx: click.Context, alert_id: str) -> None:
    """Enable or disable an alert.

    Disabling pauses the alert. Enabling a paused alert re-arms it.
    """
    try:
        alert = _get_service(ctx).toggle_enabled(alert_id)
    except AlertNotFoundError as e:
        _error_panel(str(e))
        raise SystemExit(1)
    state = "enabled" if alert.enabled else "disabled"
    console.print(f"[green]✓ Alert {alert.pair_label} {state}[/green]")


@click.command("reset")
@click.argument("alert_id")
@click.pass_context
def reset_alert(ctx: click.Context, alert_id: str) -> None:
    """Re-arm a triggered alert."""
    try:
        alert = _get_service(ctx).reset_alert(alert_id)
    except AlertNotFoundError as e:
        _error_panel(str(e))
        raise SystemExit(1)

    if alert.status == AlertStatus.ACTIVE:
        console.print(f"[green]✓ Alert {alert.pair_label} is active again[/green]")
    else:
        console.print(f"[yellow]Alert {alert.pair_label} is {alert.status.value}, nothing to reset[/yellow]")


@click.command("badge")
@click.pass_context
def show_badge(ctx: click.Context) -> None:
    """Show the number of triggered alerts."""
    count = _get_service(ctx).engine.badge_count()
    style = "yellow" if count else "green"
    console.print(f"[{style}]{count} triggered alert{'s' if count != 1 else ''}[/{style}]")
