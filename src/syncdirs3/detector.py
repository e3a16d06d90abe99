"""
Change detection -- has this file's content changed since the last sync?

Every uploaded object carries the SHA-256 of its content in its
metadata. A file is skipped only when that stored fingerprint matches
a fresh hash of the local bytes; anything else means upload.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, NamedTuple, Optional

from .models import Classification, FileEntry, RemoteObjectMeta, SyncTarget
from .stores import ObjectStore

logger = logging.getLogger("syncdirs3.detector")

CHUNK_SIZE = 64 * 1024


def fingerprint(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file, streaming it.

    Args:
        path: File to hash.

    Returns:
        Hex-encoded SHA-256 digest. Empty files hash like empty input.

    Raises:
        OSError: If the file is missing or unreadable.
    """
    with open(path, "rb") as f:
        return fingerprint_stream(f)


def fingerprint_stream(handle: BinaryIO) -> str:
    """SHA-256 hex digest of a binary stream, read from its current position."""
    h = hashlib.sha256()
    for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
        h.update(chunk)
    return h.hexdigest()


def classify(
    local_fingerprint: str, remote_meta: Optional[RemoteObjectMeta]
) -> Classification:
    """Compare a local fingerprint with the remote one."""
    if remote_meta is not None and remote_meta.fingerprint == local_fingerprint:
        return Classification.UNCHANGED
    return Classification.NEEDS_UPLOAD


class Detection(NamedTuple):
    entry: FileEntry
    fingerprint: str
    classification: Classification


class ChangeDetector:
    """Classifies entries against the remote store's metadata."""

    def __init__(self, store: ObjectStore, target: SyncTarget):
        self.store = store
        self.target = target

    def detect(self, entry: FileEntry) -> Detection:
        """Fingerprint a file and compare it with its remote copy.

        Raises:
            OSError: The local file vanished or is unreadable.
            RemoteError: The metadata lookup failed.
        """
        local = fingerprint(entry.local_path)
        remote = self.store.head_object(self.target.bucket, entry.remote_key)
        result = classify(local, remote)
        logger.debug(
            "%s -> %s (local=%s remote=%s)",
            entry.remote_key,
            result.value,
            local[:12],
            remote.fingerprint[:12] if remote else None,
        )
        return Detection(entry, local, result)
