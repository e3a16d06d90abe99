"""Config commands: show and set defaults in config.yaml."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml
from pydantic import ValidationError

from ..engine import SyncOrchestrator
from ..models import SyncDirConfig
from ._common import SYNC_HOME, console

NULL_VALUES = {"", "none", "null"}


def _parse_value(key: str, raw: str):
    """Turn a command-line string into a config value."""
    if key == "exclude":
        return [part.strip() for part in raw.split(",") if part.strip()]
    if raw.strip().lower() in NULL_VALUES:
        return None
    return raw


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Show or change the defaults used by sync."""

    @config.command("show")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    def config_show(home):
        """Print the effective configuration."""
        orchestrator = SyncOrchestrator(home=Path(home), console=console)
        data = orchestrator.config.model_dump(mode="json")
        click.echo(yaml.dump(data, default_flow_style=False).rstrip())

    @config.command("set")
    @click.argument("key", type=click.Choice(sorted(SyncDirConfig.model_fields)))
    @click.argument("value")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    def config_set(key, value, home):
        """Set KEY to VALUE in config.yaml (use "none" to clear)."""
        orchestrator = SyncOrchestrator(home=Path(home), console=console)
        try:
            orchestrator.update_config(**{key: _parse_value(key, value)})
        except ValidationError as exc:
            first = exc.errors()[0]
            console.print(f"[bold red]Invalid value for {key}:[/] {first['msg']}")
            sys.exit(1)

        console.print(f"  [green]{key}[/] = {getattr(orchestrator.config, key)}")
