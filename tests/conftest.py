"""Shared test fixtures for sync-dir-s3."""

from __future__ import annotations

import io
import threading
import time
from pathlib import Path
from typing import Optional

import pytest
from rich.console import Console

from syncdirs3.models import RemoteObjectMeta
from syncdirs3.prompts import Prompter
from syncdirs3.stores import ObjectStore, RemoteError


class MemoryStore(ObjectStore):
    """In-memory object store that records every call."""

    def __init__(self, put_delay: float = 0.0):
        self.objects: dict[tuple[str, str], dict] = {}
        self.puts: list[str] = []
        self.heads: list[str] = []
        self.fail_put: set[str] = set()
        self.fail_head: set[str] = set()
        self.put_delay = put_delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    def head_object(self, bucket: str, key: str) -> Optional[RemoteObjectMeta]:
        with self._lock:
            self.heads.append(key)
        if key in self.fail_head:
            raise RemoteError(key, "head failed")
        obj = self.objects.get((bucket, key))
        return obj["meta"] if obj else None

    def put_object(self, bucket, key, body, content_type, metadata, acl="private"):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.put_delay:
                time.sleep(self.put_delay)
            if key in self.fail_put:
                raise RemoteError(key, "transient network failure")
            data = body.read()
            with self._lock:
                self.puts.append(key)
                self.objects[(bucket, key)] = {
                    "body": data,
                    "content_type": content_type,
                    "meta": metadata,
                    "acl": acl,
                }
        finally:
            with self._lock:
                self.in_flight -= 1


class ScriptedPrompter(Prompter):
    """Answers prompts from a fixed script, failing on surprises."""

    def __init__(self, answers=None):
        self.answers = list(answers or [])
        self.asked: list[str] = []

    def _next(self, text):
        self.asked.append(text)
        assert self.answers, f"unexpected prompt: {text!r}"
        return self.answers.pop(0)

    def question(self, text, hidden=False, confirm=False):
        answer = self._next(text)
        assert isinstance(answer, str), f"expected text answer for {text!r}"
        return answer

    def yes_no(self, text, default=False):
        answer = self._next(text)
        assert isinstance(answer, bool), f"expected yes/no answer for {text!r}"
        return answer


@pytest.fixture
def sync_home(tmp_path: Path) -> Path:
    """Provide a temporary sync home directory."""
    home = tmp_path / ".sync-dir-s3"
    home.mkdir()
    return home


@pytest.fixture
def sync_dir(tmp_path: Path) -> Path:
    """Provide an empty directory to sync."""
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def prompter_factory():
    """Build a ScriptedPrompter from a list of answers."""
    return ScriptedPrompter


@pytest.fixture
def quiet_console() -> Console:
    """A console that writes into a buffer readable via .file.getvalue()."""
    return Console(file=io.StringIO(), width=200, force_terminal=False)
