"""
Sync Orchestrator -- one run, start to finish.

Reads the config, unlocks the credentials, resolves the bucket, asks
for confirmation, runs the upload pipeline and reports what happened:

    AWAIT_CREDENTIALS -> AWAIT_BUCKET -> AWAIT_CONFIRMATION
        -> EXECUTING -> REPORTING -> DONE

Setup failures end the run with exit code 1. Declining a confirmation
ends it cleanly with exit code 0 before any remote call is made.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import yaml
from botocore.exceptions import BotoCoreError
from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from . import SYNC_HOME
from .enumerator import build_entries, list_files
from .models import (
    CredentialRecord,
    KeyPolicy,
    StoreType,
    SyncDirConfig,
    SyncRunState,
    SyncTarget,
)
from .pipeline import DEFAULT_CONCURRENCY, SyncResult, UploadPipeline
from .prompts import ClickPrompter, Prompter
from .stores import ObjectStore, create_store
from .vault import VAULT_FILENAME, CredentialVault, VaultError

logger = logging.getLogger("syncdirs3.engine")

CONFIG_FILENAME = "config.yaml"
STATE_FILENAME = "state.json"

EXIT_OK = 0
EXIT_FAILURE = 1

StoreFactory = Callable[[SyncDirConfig, Optional[CredentialRecord]], ObjectStore]
FileLister = Callable[..., list]


class RunPhase(str, Enum):
    """Where a run currently is."""

    AWAIT_CREDENTIALS = "await_credentials"
    AWAIT_BUCKET = "await_bucket"
    AWAIT_CONFIRMATION = "await_confirmation"
    EXECUTING = "executing"
    REPORTING = "reporting"
    DONE = "done"
    DECLINED = "declined"
    FAILED = "failed"


class SetupError(Exception):
    """Raised when a run cannot get as far as uploading."""


class UserDeclined(Exception):
    """Raised when the user answers no to a confirmation."""


class SyncOptions(BaseModel):
    """Per-run options, usually straight from the command line.

    None means "use the config default".
    """

    directory: Path = Path(".")
    bucket: Optional[str] = None
    recursive: bool = False
    quiet: bool = False
    public: Optional[bool] = None
    yes: bool = False
    password: Optional[str] = None
    concurrency: Optional[int] = None
    key_policy: Optional[KeyPolicy] = None
    key_prefix: Optional[str] = None


@dataclass
class RunOutcome:
    exit_code: int
    phase: RunPhase
    result: Optional[SyncResult] = None


class SyncOrchestrator:
    """Drives a single sync run through its phases.

    Owns the run's target and result; the vault owns all credential
    file I/O.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        prompter: Optional[Prompter] = None,
        console: Optional[Console] = None,
        store_factory: StoreFactory = create_store,
        enumerate_files: FileLister = list_files,
        vault: Optional[CredentialVault] = None,
        hostname: Optional[str] = None,
    ):
        """Initialize the orchestrator.

        Args:
            home: Sync home holding config, state and vault.
                Defaults to ~/.sync-dir-s3.
            prompter: Source of interactive answers.
            console: Rich console for user-facing output.
            store_factory: Builds the object store from config + credentials.
            enumerate_files: Lists candidate files for a directory.
            vault: Credential vault. Defaults to <home>/credentials.enc.
            hostname: Override for host-qualified object keys.
        """
        self.home = (home or Path(SYNC_HOME)).expanduser()
        self.prompter = prompter or ClickPrompter()
        self.console = console or Console()
        self.store_factory = store_factory
        self.enumerate_files = enumerate_files
        self.vault = vault or CredentialVault(self.home / VAULT_FILENAME)
        self.hostname = hostname
        self.phase = RunPhase.AWAIT_CREDENTIALS

        self.config = self._load_config()
        self.state = self._load_state()

    # ------------------------------------------------------------------
    # Config and state
    # ------------------------------------------------------------------

    def _load_config(self) -> SyncDirConfig:
        """Load sync configuration from disk."""
        config_file = self.home / CONFIG_FILENAME
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
                return SyncDirConfig(**data)
            except (yaml.YAMLError, ValueError, TypeError) as exc:
                logger.warning("Failed to load sync config: %s", exc)
        return SyncDirConfig()

    def save_config(self) -> Path:
        """Persist sync configuration to disk."""
        self.home.mkdir(mode=0o700, parents=True, exist_ok=True)
        config_file = self.home / CONFIG_FILENAME
        data = self.config.model_dump(mode="json", exclude_none=True)
        config_file.write_text(
            yaml.dump(data, default_flow_style=False), encoding="utf-8"
        )
        return config_file

    def update_config(self, **changes: Any) -> SyncDirConfig:
        """Validate and persist config changes.

        Raises:
            ValidationError: If a value is invalid for its field.
            KeyError: If a key is not a config field.
        """
        unknown = set(changes) - set(SyncDirConfig.model_fields)
        if unknown:
            raise KeyError(", ".join(sorted(unknown)))
        merged = {**self.config.model_dump(), **changes}
        self.config = SyncDirConfig.model_validate(merged)
        self.save_config()
        logger.info("Updated config: %s", ", ".join(sorted(changes)))
        return self.config

    def _load_state(self) -> SyncRunState:
        """Load run state from disk."""
        state_file = self.home / STATE_FILENAME
        if state_file.exists():
            try:
                data = json.loads(state_file.read_text(encoding="utf-8"))
                return SyncRunState(**data)
            except (json.JSONDecodeError, ValueError, TypeError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncRunState()

    def _save_state(self) -> None:
        """Persist run state to disk."""
        try:
            self.home.mkdir(mode=0o700, parents=True, exist_ok=True)
            (self.home / STATE_FILENAME).write_text(
                self.state.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("Could not save sync state: %s", exc)

    def status(self) -> dict:
        """Get vault, config and last-run information.

        Returns:
            Dict with vault, config and state sections.
        """
        return {
            "home": str(self.home),
            "vault": {
                "path": str(self.vault.path),
                "exists": self.vault.exists(),
            },
            "config": self.config.model_dump(mode="json"),
            "state": self.state.model_dump(mode="json"),
        }

    # ------------------------------------------------------------------
    # The run
    # ------------------------------------------------------------------

    def run(self, options: SyncOptions) -> RunOutcome:
        """Execute one sync run.

        Args:
            options: Per-run options.

        Returns:
            RunOutcome with the exit code, final phase and result.
        """
        directory = Path(options.directory).expanduser()
        try:
            files = self.enumerate_files(
                directory,
                recursive=options.recursive,
                exclude=self.config.exclude,
            )
        except OSError as exc:
            return self._fatal(f"Cannot read {directory}: {exc}")

        if not files:
            self.console.print("There are no files to sync.")
            self.phase = RunPhase.DONE
            return RunOutcome(EXIT_OK, self.phase, SyncResult())

        try:
            self.phase = RunPhase.AWAIT_CREDENTIALS
            credentials = self._obtain_credentials(options)

            self.phase = RunPhase.AWAIT_BUCKET
            target = self._resolve_target(options)

            self.phase = RunPhase.AWAIT_CONFIRMATION
            self._confirm(options, target, len(files))

            try:
                store = self.store_factory(self.config, credentials)
            except BotoCoreError as exc:
                raise SetupError(f"Cannot set up the store: {exc}") from exc
        except UserDeclined:
            logger.info("Run declined by user")
            self.phase = RunPhase.DECLINED
            return RunOutcome(EXIT_OK, self.phase)
        except (SetupError, VaultError, ValueError, OSError) as exc:
            return self._fatal(str(exc))

        self.phase = RunPhase.EXECUTING
        entries = build_entries(
            directory,
            files,
            policy=options.key_policy or self.config.key_policy,
            prefix=(
                options.key_prefix
                if options.key_prefix is not None
                else self.config.key_prefix
            ),
            hostname=self.hostname,
        )
        concurrency = (
            options.concurrency or self.config.concurrency or DEFAULT_CONCURRENCY
        )
        result = self._execute(store, target, entries, concurrency, options.quiet)

        self.phase = RunPhase.REPORTING
        self._report(result, options.quiet)
        self._record_run(directory, target, result)

        self.phase = RunPhase.DONE
        exit_code = EXIT_OK if result.ok else EXIT_FAILURE
        return RunOutcome(exit_code, self.phase, result)

    def _obtain_credentials(self, options: SyncOptions) -> Optional[CredentialRecord]:
        """Unlock the vault, or collect (and optionally save) new credentials."""
        if self.config.store == StoreType.LOCAL:
            logger.debug("Local store selected, no credentials needed")
            return None

        if self.vault.exists():
            password = options.password or self.prompter.question(
                "Password", hidden=True
            )
            return self.vault.load(password)

        self.console.print("\nCredentials could not be found.\n")
        access_key = self.prompter.question("Access key").strip()
        secret_key = self.prompter.question("Secret key", hidden=True).strip()
        if not access_key or not secret_key:
            raise SetupError("Both an access key and a secret key are required.")
        record = CredentialRecord(access_key=access_key, secret_key=secret_key)

        if self.prompter.yes_no(f"Save credentials in {self.vault.path}?"):
            self.console.print("\nCredentials will be encrypted.\n")
            password = options.password or self.prompter.question(
                "Enter a password", hidden=True, confirm=True
            )
            if not password:
                raise SetupError("A password is required to save credentials.")
            self.vault.save(password, record)
        else:
            logger.info("Using credentials for this run only")
        return record

    def _resolve_target(self, options: SyncOptions) -> SyncTarget:
        bucket = options.bucket or self.config.bucket
        if not bucket:
            bucket = self.prompter.question("Bucket")
        bucket = (bucket or "").strip()
        if not bucket:
            raise SetupError("A bucket name is required.")
        public = options.public if options.public is not None else self.config.public
        return SyncTarget(bucket=bucket, public_read=public)

    def _confirm(self, options: SyncOptions, target: SyncTarget, count: int) -> None:
        if options.yes:
            return
        if target.public_read and not self.prompter.yes_no(
            "Are you sure you want these files to be public?"
        ):
            raise UserDeclined()
        if not self.prompter.yes_no(f"Sync {count} file(s)?"):
            raise UserDeclined()

    def _execute(
        self,
        store: ObjectStore,
        target: SyncTarget,
        entries: Sequence,
        concurrency: int,
        quiet: bool,
    ) -> SyncResult:
        if quiet:
            pipeline = UploadPipeline(store, target, concurrency=concurrency)
            return pipeline.run(entries)

        with Progress(
            TextColumn("syncing"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task("sync", total=len(entries))
            pipeline = UploadPipeline(
                store,
                target,
                concurrency=concurrency,
                on_progress=lambda entry, outcome: progress.advance(task),
            )
            return pipeline.run(entries)

    def _report(self, result: SyncResult, quiet: bool) -> None:
        if not quiet:
            self.console.print(f"updated {result.updated} files")
            self.console.print(f"{result.unchanged} files were unchanged")

        if result.failures:
            self.console.print(
                f"[bold red]{len(result.failures)} file(s) failed to sync:[/]"
            )
            for failure in result.failures:
                self.console.print(
                    f"  [red]{escape(str(failure.entry.local_path))}[/]: "
                    f"{escape(failure.error)}"
                )

    def _record_run(
        self, directory: Path, target: SyncTarget, result: SyncResult
    ) -> None:
        snap = result.snapshot()
        self.state.last_run = datetime.now(timezone.utc)
        self.state.last_bucket = target.bucket
        self.state.last_directory = str(directory.resolve())
        self.state.run_count += 1
        self.state.last_updated = snap["updated"]
        self.state.last_unchanged = snap["unchanged"]
        self.state.last_failed = snap["failed"]
        self.state.last_failures = snap["failures"]
        self.state.last_error = (
            snap["failures"][0]["error"] if snap["failures"] else None
        )
        self._save_state()

    def _fatal(self, message: str) -> RunOutcome:
        logger.info("Sync aborted: %s", message)
        self.console.print(f"[bold red]{escape(message)}[/]")
        self.phase = RunPhase.FAILED
        return RunOutcome(EXIT_FAILURE, self.phase)
