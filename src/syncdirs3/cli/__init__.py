"""
sync-dir-s3 CLI.

The main Click group is defined here and every command group is
registered from its own module.

Entry point: syncdirs3.cli:main
"""

from __future__ import annotations

import click

from .. import __version__
from ._common import configure_logging


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="sync-dir-s3")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool):
    """Sync a directory to an object-storage bucket.

    Only files whose content changed since the last sync are uploaded.
    Credentials are kept encrypted under your password.
    """
    configure_logging(verbose)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .sync_cmd import register_sync_commands
from .status import register_status_commands
from .credentials import register_credentials_commands
from .config_cmd import register_config_commands

register_sync_commands(main)
register_status_commands(main)
register_credentials_commands(main)
register_config_commands(main)
