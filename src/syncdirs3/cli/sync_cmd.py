"""Sync command: push a directory's changed files to the bucket."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ..engine import SyncOptions, SyncOrchestrator
from ..models import KeyPolicy
from ._common import SYNC_HOME, console


def register_sync_commands(main: click.Group) -> None:
    """Register the sync command."""

    @main.command("sync")
    @click.argument(
        "directory",
        default=".",
        type=click.Path(file_okay=False, path_type=Path),
    )
    @click.option("--bucket", "-b", default=None, help="Target bucket.")
    @click.option("--recursive", "-r", is_flag=True, help="Include subdirectories.")
    @click.option("--quiet", "-q", is_flag=True, help="Suppress progress info.")
    @click.option(
        "--public/--private",
        default=None,
        help="Make uploaded files publicly readable (default: config, else private).",
    )
    @click.option("--yes", "-y", is_flag=True, help="Answer yes to all questions.")
    @click.option("--password", default=None, help="Vault password (skips the prompt).")
    @click.option(
        "--concurrency", "-j",
        type=click.IntRange(min=1),
        default=None,
        help="Maximum files in flight at once.",
    )
    @click.option(
        "--key-policy",
        type=click.Choice([p.value for p in KeyPolicy]),
        default=None,
        help="host: <hostname>/abs/path keys. relative: keys relative to DIRECTORY.",
    )
    @click.option("--prefix", default=None, help="Prefix prepended to every object key.")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    def sync(
        directory: Path,
        bucket: Optional[str],
        recursive: bool,
        quiet: bool,
        public: Optional[bool],
        yes: bool,
        password: Optional[str],
        concurrency: Optional[int],
        key_policy: Optional[str],
        prefix: Optional[str],
        home: str,
    ):
        """Upload files in DIRECTORY that changed since the last sync."""
        orchestrator = SyncOrchestrator(home=Path(home), console=console)
        options = SyncOptions(
            directory=directory,
            bucket=bucket,
            recursive=recursive,
            quiet=quiet,
            public=public,
            yes=yes,
            password=password,
            concurrency=concurrency,
            key_policy=KeyPolicy(key_policy) if key_policy else None,
            key_prefix=prefix,
        )
        outcome = orchestrator.run(options)
        if outcome.exit_code:
            sys.exit(outcome.exit_code)
