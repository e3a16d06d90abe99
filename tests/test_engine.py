"""
Tests for the sync orchestrator -- prompts, phases, exit codes, state.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from botocore.exceptions import ProfileNotFound
from pydantic import ValidationError

from conftest import MemoryStore
from syncdirs3.engine import (
    EXIT_FAILURE,
    EXIT_OK,
    RunPhase,
    SyncOptions,
    SyncOrchestrator,
)
from syncdirs3.models import CredentialRecord, KeyPolicy, StoreType
from syncdirs3.stores import create_store
from syncdirs3.vault import CredentialVault

RECORD = CredentialRecord(access_key="AKIDEXAMPLE", secret_key="s3cr3t")


class Harness:
    """Builds an orchestrator wired to in-memory collaborators."""

    def __init__(self, home: Path, console, store: MemoryStore):
        self.home = home
        self.console = console
        self.store = store
        self.vault = CredentialVault(home / "credentials.enc", iterations=1_000)
        self.factory_calls: list = []

    def factory(self, config, credentials):
        self.factory_calls.append((config, credentials))
        return self.store

    def orchestrator(self, prompter) -> SyncOrchestrator:
        return SyncOrchestrator(
            home=self.home,
            prompter=prompter,
            console=self.console,
            store_factory=self.factory,
            vault=self.vault,
            hostname="box",
        )

    @property
    def output(self) -> str:
        return self.console.file.getvalue()


@pytest.fixture
def harness(sync_home, quiet_console, memory_store) -> Harness:
    return Harness(sync_home, quiet_console, memory_store)


def _files(directory: Path, *names: str) -> None:
    for name in names:
        (directory / name).write_text(f"content of {name}")


class TestEmptyDirectory:
    """A run with nothing to do."""

    def test_no_files_no_prompts(self, harness: Harness, sync_dir: Path, prompter_factory):
        """An empty directory exits 0 without asking anything."""
        prompter = prompter_factory([])
        outcome = harness.orchestrator(prompter).run(SyncOptions(directory=sync_dir))

        assert outcome.exit_code == EXIT_OK
        assert outcome.phase == RunPhase.DONE
        assert prompter.asked == []
        assert harness.factory_calls == []
        assert "There are no files to sync." in harness.output

    def test_missing_directory_is_fatal(self, harness: Harness, tmp_path: Path, prompter_factory):
        outcome = harness.orchestrator(prompter_factory([])).run(
            SyncOptions(directory=tmp_path / "missing")
        )
        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.phase == RunPhase.FAILED


class TestCredentials:
    """Credential collection and the vault."""

    def test_first_run_save_declined(self, harness: Harness, sync_dir: Path, prompter_factory):
        """Declining to save uses the credentials for this run only."""
        _files(sync_dir, "a.txt")
        prompter = prompter_factory(["AKID", "SECRET", False, "my-bucket", True])

        outcome = harness.orchestrator(prompter).run(SyncOptions(directory=sync_dir))

        assert outcome.exit_code == EXIT_OK
        assert prompter.asked[:3] == [
            "Access key",
            "Secret key",
            f"Save credentials in {harness.vault.path}?",
        ]
        assert not harness.vault.exists()
        assert harness.factory_calls[0][1] == CredentialRecord(access_key="AKID", secret_key="SECRET")
        assert "Credentials could not be found." in harness.output

    def test_first_run_save_accepted(self, harness: Harness, sync_dir: Path, prompter_factory):
        """Saved credentials open with the chosen password on the next run."""
        _files(sync_dir, "a.txt")
        prompter = prompter_factory(["AKID", "SECRET", True, "pw", "my-bucket", True])

        harness.orchestrator(prompter).run(SyncOptions(directory=sync_dir))

        assert "Enter a password" in prompter.asked
        assert "Credentials will be encrypted." in harness.output
        assert harness.vault.load("pw") == CredentialRecord(access_key="AKID", secret_key="SECRET")

        second = prompter_factory(["pw", True])
        outcome = harness.orchestrator(second).run(
            SyncOptions(directory=sync_dir, bucket="my-bucket")
        )
        assert outcome.exit_code == EXIT_OK
        assert second.asked == ["Password", "Sync 1 file(s)?"]

    def test_wrong_password(self, harness: Harness, sync_dir: Path, prompter_factory):
        """A wrong password ends the run before any remote call."""
        _files(sync_dir, "a.txt")
        harness.vault.save("right", RECORD)

        outcome = harness.orchestrator(prompter_factory(["wrong"])).run(
            SyncOptions(directory=sync_dir, bucket="b")
        )

        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.phase == RunPhase.FAILED
        assert harness.factory_calls == []
        assert "Password was invalid." in harness.output

    def test_password_option_skips_prompt(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)
        prompter = prompter_factory([])

        outcome = harness.orchestrator(prompter).run(
            SyncOptions(directory=sync_dir, bucket="b", password="pw", yes=True)
        )

        assert outcome.exit_code == EXIT_OK
        assert prompter.asked == []
        assert harness.factory_calls[0][1] == RECORD

    def test_blank_keys_rejected(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        outcome = harness.orchestrator(prompter_factory(["  ", "SECRET"])).run(
            SyncOptions(directory=sync_dir)
        )
        assert outcome.exit_code == EXIT_FAILURE
        assert harness.factory_calls == []

    def test_local_store_needs_no_credentials(
        self, harness: Harness, sync_dir: Path, prompter_factory, tmp_path: Path
    ):
        _files(sync_dir, "a.txt")
        orchestrator = harness.orchestrator(prompter_factory([]))
        orchestrator.update_config(store="local", local_root=str(tmp_path / "remote"))

        outcome = orchestrator.run(SyncOptions(directory=sync_dir, bucket="b", yes=True))

        assert outcome.exit_code == EXIT_OK
        assert harness.factory_calls[0][1] is None


class TestTargetAndConfirmation:
    """Bucket resolution and the yes/no questions."""

    def test_bucket_from_config(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)
        orchestrator = harness.orchestrator(prompter_factory([True]))
        orchestrator.update_config(bucket="configured")

        outcome = orchestrator.run(SyncOptions(directory=sync_dir, password="pw"))

        assert outcome.exit_code == EXIT_OK
        assert ("configured", "a.txt") in [
            (bucket, Path(key).name) for bucket, key in harness.store.objects
        ]

    def test_empty_bucket_is_fatal(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)

        outcome = harness.orchestrator(prompter_factory(["   "])).run(
            SyncOptions(directory=sync_dir, password="pw")
        )

        assert outcome.exit_code == EXIT_FAILURE
        assert "bucket name is required" in harness.output

    def test_public_declined(self, harness: Harness, sync_dir: Path, prompter_factory):
        """Declining the public warning stops before any store is built."""
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)
        prompter = prompter_factory([False])

        outcome = harness.orchestrator(prompter).run(
            SyncOptions(directory=sync_dir, bucket="b", public=True, password="pw")
        )

        assert outcome.exit_code == EXIT_OK
        assert outcome.phase == RunPhase.DECLINED
        assert prompter.asked == ["Are you sure you want these files to be public?"]
        assert harness.factory_calls == []
        assert harness.store.heads == []

    def test_sync_declined(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt", "b.txt")
        harness.vault.save("pw", RECORD)
        prompter = prompter_factory([False])

        outcome = harness.orchestrator(prompter).run(
            SyncOptions(directory=sync_dir, bucket="b", password="pw")
        )

        assert outcome.phase == RunPhase.DECLINED
        assert prompter.asked == ["Sync 2 file(s)?"]
        assert harness.store.puts == []

    def test_public_accepted(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)

        harness.orchestrator(prompter_factory([True, True])).run(
            SyncOptions(directory=sync_dir, bucket="b", public=True, password="pw")
        )

        [stored] = harness.store.objects.values()
        assert stored["acl"] == "public-read"

    def test_yes_skips_questions(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)
        prompter = prompter_factory([])

        outcome = harness.orchestrator(prompter).run(
            SyncOptions(directory=sync_dir, bucket="b", public=True, yes=True, password="pw")
        )

        assert outcome.exit_code == EXIT_OK
        assert prompter.asked == []

    def test_store_construction_error(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        orchestrator = harness.orchestrator(prompter_factory([]))
        orchestrator.store_factory = create_store
        orchestrator.update_config(store="local")

        outcome = orchestrator.run(SyncOptions(directory=sync_dir, bucket="b", yes=True))

        assert outcome.exit_code == EXIT_FAILURE
        assert "local_root" in harness.output


    def test_store_client_error(self, harness: Harness, sync_dir: Path, prompter_factory):
        """A botocore failure while building the client is a setup error."""
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)
        orchestrator = harness.orchestrator(prompter_factory([]))

        def missing_profile(config, credentials):
            raise ProfileNotFound(profile="nightly")

        orchestrator.store_factory = missing_profile
        outcome = orchestrator.run(
            SyncOptions(directory=sync_dir, bucket="b", password="pw", yes=True)
        )

        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.phase == RunPhase.FAILED
        assert "nightly" in harness.output


class TestRunOutcomes:
    """Executed runs: reporting, exit codes and keys."""

    def _run(self, harness: Harness, sync_dir: Path, prompter_factory, **kwargs):
        options = dict(directory=sync_dir, bucket="b", password="pw", yes=True)
        options.update(kwargs)
        return harness.orchestrator(prompter_factory([])).run(SyncOptions(**options))

    def test_only_changed_file_uploaded(self, harness: Harness, sync_dir: Path, prompter_factory):
        """a.txt unchanged, b.txt modified: one upload, one skip."""
        _files(sync_dir, "a.txt", "b.txt")
        harness.vault.save("pw", RECORD)
        self._run(harness, sync_dir, prompter_factory)
        harness.store.puts.clear()
        (sync_dir / "b.txt").write_text("b was edited")

        outcome = self._run(harness, sync_dir, prompter_factory)

        assert outcome.exit_code == EXIT_OK
        assert outcome.result.updated == 1
        assert outcome.result.unchanged == 1
        assert [Path(k).name for k in harness.store.puts] == ["b.txt"]
        assert "updated 1 files" in harness.output
        assert "1 files were unchanged" in harness.output

    def test_partial_failure_exit_code(self, harness: Harness, sync_dir: Path, prompter_factory):
        """Every file is attempted; one failure makes the exit code 1."""
        _files(sync_dir, "a.txt", "b.txt", "c.txt")
        harness.vault.save("pw", RECORD)
        harness.store.fail_put.add("c.txt")

        outcome = self._run(harness, sync_dir, prompter_factory, key_policy=KeyPolicy.RELATIVE)

        assert outcome.exit_code == EXIT_FAILURE
        assert outcome.phase == RunPhase.DONE
        assert outcome.result.updated == 2
        assert "1 file(s) failed to sync" in harness.output
        assert "c.txt" in harness.output

        state = json.loads((harness.home / "state.json").read_text())
        assert state["last_failed"] == 1
        assert [f["key"] for f in state["last_failures"]] == ["c.txt"]
        assert state["last_failures"][0]["kind"] == "remote"
        assert "transient network failure" in state["last_error"]

    def test_quiet_hides_summary_not_failures(
        self, harness: Harness, sync_dir: Path, prompter_factory
    ):
        _files(sync_dir, "a.txt", "c.txt")
        harness.vault.save("pw", RECORD)
        harness.store.fail_put.add("c.txt")

        self._run(harness, sync_dir, prompter_factory, quiet=True, key_policy=KeyPolicy.RELATIVE)

        assert "updated" not in harness.output
        assert "failed to sync" in harness.output

    def test_host_keys_by_default(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)

        self._run(harness, sync_dir, prompter_factory)

        [key] = harness.store.puts
        assert key == "box" + (sync_dir.resolve() / "a.txt").as_posix()

    def test_prefix_and_relative_keys(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        harness.vault.save("pw", RECORD)

        self._run(
            harness, sync_dir, prompter_factory,
            key_policy=KeyPolicy.RELATIVE, key_prefix="site",
        )

        assert harness.store.puts == ["site/a.txt"]

    def test_recursive(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt")
        (sync_dir / "sub").mkdir()
        _files(sync_dir / "sub", "deep.txt")
        harness.vault.save("pw", RECORD)

        flat = self._run(harness, sync_dir, prompter_factory, key_policy=KeyPolicy.RELATIVE)
        deep = self._run(
            harness, sync_dir, prompter_factory, key_policy=KeyPolicy.RELATIVE, recursive=True
        )

        assert flat.result.updated == 1
        assert (deep.result.updated, deep.result.unchanged) == (1, 1)
        assert "sub/deep.txt" in harness.store.puts

    def test_state_persisted(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt", "b.txt")
        harness.vault.save("pw", RECORD)

        self._run(harness, sync_dir, prompter_factory)
        self._run(harness, sync_dir, prompter_factory)

        data = json.loads((harness.home / "state.json").read_text())
        assert data["run_count"] == 2
        assert data["last_bucket"] == "b"
        assert data["last_unchanged"] == 2
        assert data["last_updated"] == 0
        assert data["last_directory"] == str(sync_dir.resolve())

        status = harness.orchestrator(prompter_factory([])).status()
        assert status["state"]["run_count"] == 2
        assert status["vault"]["exists"] is True


class TestConfig:
    """Config loading and updates."""

    def test_defaults_without_file(self, harness: Harness, prompter_factory):
        config = harness.orchestrator(prompter_factory([])).config
        assert config.store == StoreType.S3
        assert config.bucket is None
        assert config.server_side_encryption == "AES256"

    def test_update_persists(self, harness: Harness, prompter_factory):
        orchestrator = harness.orchestrator(prompter_factory([]))
        orchestrator.update_config(bucket="mine", concurrency=4)

        reloaded = harness.orchestrator(prompter_factory([])).config
        assert reloaded.bucket == "mine"
        assert reloaded.concurrency == 4

    def test_update_rejects_unknown_key(self, harness: Harness, prompter_factory):
        with pytest.raises(KeyError):
            harness.orchestrator(prompter_factory([])).update_config(colour="blue")

    def test_update_rejects_bad_value(self, harness: Harness, prompter_factory):
        with pytest.raises(ValidationError):
            harness.orchestrator(prompter_factory([])).update_config(concurrency=0)

    def test_malformed_config_falls_back(self, harness: Harness, prompter_factory):
        """Broken YAML logs a warning and uses defaults."""
        (harness.home / "config.yaml").write_text("bucket: [unclosed\n")
        config = harness.orchestrator(prompter_factory([])).config
        assert config.bucket is None

    def test_invalid_config_value_falls_back(self, harness: Harness, prompter_factory):
        (harness.home / "config.yaml").write_text("store: ftp\n")
        config = harness.orchestrator(prompter_factory([])).config
        assert config.store == StoreType.S3

    def test_exclude_from_config(self, harness: Harness, sync_dir: Path, prompter_factory):
        _files(sync_dir, "a.txt", "notes.tmp")
        harness.vault.save("pw", RECORD)
        orchestrator = harness.orchestrator(prompter_factory([]))
        orchestrator.update_config(exclude=["*.tmp"])

        outcome = orchestrator.run(
            SyncOptions(directory=sync_dir, bucket="b", password="pw", yes=True,
                        key_policy=KeyPolicy.RELATIVE)
        )

        assert outcome.result.updated == 1
        assert harness.store.puts == ["a.txt"]
