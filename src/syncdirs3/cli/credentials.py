"""Credentials commands: set, check, forget."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from ..models import CredentialRecord
from ..vault import VAULT_FILENAME, CredentialVault, CredentialsNotFound, InvalidPassword
from ._common import SYNC_HOME, console, mask


def _vault(home: str) -> CredentialVault:
    return CredentialVault(Path(home).expanduser() / VAULT_FILENAME)


def register_credentials_commands(main: click.Group) -> None:
    """Register the credentials command group."""

    @main.group()
    def credentials():
        """Manage the encrypted storage credentials."""

    @credentials.command("set")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    @click.option("--access-key", prompt="Access key", help="Storage access key.")
    @click.option(
        "--secret-key", prompt="Secret key", hide_input=True, help="Storage secret key."
    )
    @click.option(
        "--password",
        prompt="Enter a password",
        hide_input=True,
        confirmation_prompt=True,
        help="Password that encrypts the vault.",
    )
    @click.option("--yes", "-y", is_flag=True, help="Overwrite an existing vault without asking.")
    def credentials_set(home, access_key, secret_key, password, yes):
        """Encrypt and store an access key pair."""
        vault = _vault(home)
        if vault.exists() and not yes:
            if not click.confirm(f"Replace the credentials in {vault.path}?"):
                return

        if not access_key.strip() or not secret_key.strip() or not password:
            console.print("[bold red]Access key, secret key and password are all required.[/]")
            sys.exit(1)

        record = CredentialRecord(
            access_key=access_key.strip(), secret_key=secret_key.strip()
        )
        path = vault.save(password, record)
        console.print(f"  [green]Credentials encrypted to[/] {path}")

    @credentials.command("check")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    @click.option("--password", default=None, help="Vault password (skips the prompt).")
    def credentials_check(home, password: Optional[str]):
        """Verify the vault opens with your password."""
        vault = _vault(home)
        if not vault.exists():
            console.print(f"[yellow]No credentials found at[/] {vault.path}")
            sys.exit(1)

        password = password or click.prompt("Password", hide_input=True)
        try:
            record = vault.load(password)
        except (InvalidPassword, CredentialsNotFound) as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)

        console.print(
            f"  [green]Vault unlocked.[/] Access key: [cyan]{mask(record.access_key)}[/]"
        )

    @credentials.command("forget")
    @click.option("--home", default=SYNC_HOME, type=click.Path(), help="Config and vault directory.")
    @click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation.")
    def credentials_forget(home, yes):
        """Delete the encrypted credentials file."""
        vault = _vault(home)
        if not vault.exists():
            console.print("[dim]Nothing to forget.[/]")
            return
        if not yes and not click.confirm(f"Delete {vault.path}?"):
            return
        vault.delete()
        console.print(f"  [green]Removed[/] {vault.path}")
