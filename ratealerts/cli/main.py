"""Main CLI entry point for ratealerts.

Commands are loaded lazily so that ``ratealerts alerts`` does not pay for
importing the websocket and HTTP stacks.
"""

import importlib
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

console = Console()


class LazyGroup(click.Group):
    """A click Group that imports command modules on first use."""

    def __init__(self, *args, lazy_subcommands: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._lazy_subcommands = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        base = super().list_commands(ctx)
        return sorted(set(base) | set(self._lazy_subcommands))

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        if cmd_name in self.commands:
            return self.commands[cmd_name]
        if cmd_name in self._lazy_subcommands:
            return self._lazy_load(cmd_name)
        return None

    def _lazy_load(self, cmd_name: str) -> click.Command:
        module_path = self._lazy_subcommands[cmd_name]
        module = importlib.import_module(module_path)

        # Commands are matched by their click name, not the function name
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if isinstance(attr, click.Command) and attr.name == cmd_name:
                self.add_command(attr)
                return attr

        raise click.ClickException(f"Could not find command '{cmd_name}' in {module_path}")


LAZY_SUBCOMMANDS = {
    # Alert management
    "alert": "ratealerts.cli.alerts",
    "crypto-alert": "ratealerts.cli.alerts",
    "alerts": "ratealerts.cli.alerts",
    "toggle": "ratealerts.cli.alerts",
    "reset": "ratealerts.cli.alerts",
    "badge": "ratealerts.cli.alerts",
    # Rate checking
    "check": "ratealerts.cli.watch",
    "watch": "ratealerts.cli.watch",
    "stream": "ratealerts.cli.watch",
}


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(cls=LazyGroup, lazy_subcommands=LAZY_SUBCOMMANDS, context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="ratealerts")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/ratealerts/config.toml).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]) -> None:
    """ratealerts - threshold alerts for currency and crypto rates.

    Create alerts on a currency pair or crypto symbol, then keep
    `ratealerts watch` running to get notified when a rate crosses
    its threshold.

    \b
    Quick Start:
      ratealerts alert EUR USD above 1.10   # Currency alert
      ratealerts crypto-alert BTC below 60000
      ratealerts watch                      # Poll and stream rates
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
