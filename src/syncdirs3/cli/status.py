"""Status command: vault, config and last run at a glance."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.markup import escape
from rich.panel import Panel

from ..engine import SyncOrchestrator
from ._common import SYNC_HOME, console


def register_status_commands(main: click.Group) -> None:
    """Register the status command."""

    @main.command()
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def status(home: str, json_out: bool):
        """Show vault presence, defaults and the last sync run."""
        info = SyncOrchestrator(home=Path(home), console=console).status()

        if json_out:
            click.echo(json.dumps(info, indent=2))
            return

        vault = info["vault"]
        config = info["config"]
        state = info["state"]

        vault_line = (
            "[green]present[/]" if vault["exists"] else "[yellow]not created[/]"
        )
        console.print()
        console.print(
            Panel(
                f"Vault: {vault_line} [dim]{vault['path']}[/]\n"
                f"Store: [cyan]{config['store']}[/]\n"
                f"Bucket: {config['bucket'] or '[dim]ask each run[/]'}\n"
                f"Public: {'yes' if config['public'] else 'no'}\n"
                f"Key policy: {config['key_policy']}",
                title="sync-dir-s3",
                border_style="cyan",
            )
        )

        if state["last_run"]:
            console.print(
                f"  Last run: {state['last_run']} -> [cyan]{state['last_bucket']}[/]"
            )
            console.print(
                f"  updated {state['last_updated']}, "
                f"unchanged {state['last_unchanged']}, "
                f"failed {state['last_failed']} "
                f"[dim]({state['run_count']} run(s) total)[/]"
            )
            for failure in state["last_failures"]:
                console.print(
                    f"    [red]{escape(failure['path'])}[/]: {escape(failure['error'])}"
                )
        else:
            console.print("  [dim]No sync has run yet.[/]")
        console.print()
