"""
Upload pipeline -- bounded, concurrent, failure-isolated transfers.

All work for a run goes through one ThreadPoolExecutor sized to the
concurrency limit:

    entry --detect (hash + head)--> UNCHANGED     -> counted, ticked
                                 -> NEEDS_UPLOAD  --put--> updated

Detection and upload tasks share the pool, so at most K of them are
ever in flight. The calling thread drains completed futures and is the
only writer of the run's SyncResult and the only caller of the progress
hook. A failing file is recorded and its siblings carry on.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, Optional

from .detector import ChangeDetector, Detection, fingerprint_stream
from .models import (
    Classification,
    FileEntry,
    FileFailure,
    RemoteObjectMeta,
    SyncTarget,
)
from .stores import ObjectStore, RemoteError, content_type_for, uploader_info

logger = logging.getLogger("syncdirs3.pipeline")

DEFAULT_CONCURRENCY = min(16, 2 * (os.cpu_count() or 1))

OUTCOME_UNCHANGED = "unchanged"
OUTCOME_UPDATED = "updated"
OUTCOME_FAILED = "failed"

ProgressHook = Callable[[FileEntry, str], None]


class SyncResult:
    """Thread-safe per-run outcome counters.

    Every input file ends up in exactly one of updated, unchanged or
    failures. All access is lock-protected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.updated: int = 0
        self.unchanged: int = 0
        self.failures: list[FileFailure] = []

    def record_updated(self) -> None:
        with self._lock:
            self.updated += 1

    def record_unchanged(self) -> None:
        with self._lock:
            self.unchanged += 1

    def record_failure(self, entry: FileEntry, exc: BaseException) -> FileFailure:
        """Record a failed file, classifying the error."""
        if isinstance(exc, OSError):
            kind = "io"
        elif isinstance(exc, RemoteError):
            kind = "remote"
        else:
            kind = "error"
        failure = FileFailure(entry=entry, error=str(exc) or type(exc).__name__, kind=kind)
        with self._lock:
            self.failures.append(failure)
        return failure

    @property
    def processed(self) -> int:
        with self._lock:
            return self.updated + self.unchanged + len(self.failures)

    @property
    def ok(self) -> bool:
        with self._lock:
            return not self.failures

    def snapshot(self) -> dict:
        """Return a serializable snapshot of the counters."""
        with self._lock:
            return {
                "updated": self.updated,
                "unchanged": self.unchanged,
                "failed": len(self.failures),
                "failures": [
                    {
                        "path": str(f.entry.local_path),
                        "key": f.entry.remote_key,
                        "kind": f.kind,
                        "error": f.error,
                    }
                    for f in self.failures
                ],
            }


class UploadPipeline:
    """Runs detection and uploads for a batch of entries."""

    def __init__(
        self,
        store: ObjectStore,
        target: SyncTarget,
        detector: Optional[ChangeDetector] = None,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressHook] = None,
        uploaded_from: Optional[str] = None,
    ):
        """Initialize the pipeline.

        Args:
            store: Remote object store.
            target: Bucket and ACL for this run.
            detector: Change detector. Defaults to one over the same store.
            concurrency: Max tasks in flight. Defaults to DEFAULT_CONCURRENCY.
            on_progress: Called once per entry with its outcome.
            uploaded_from: Uploader description stored in object metadata.
        """
        self.store = store
        self.target = target
        self.detector = detector or ChangeDetector(store, target)
        self.concurrency = concurrency or DEFAULT_CONCURRENCY
        self.on_progress = on_progress
        self.uploaded_from = uploaded_from or uploader_info()

    def run(
        self,
        entries: Iterable[FileEntry],
        concurrency: Optional[int] = None,
    ) -> SyncResult:
        """Sync every entry and wait for all of them to settle.

        Args:
            entries: Files to sync.
            concurrency: Override the pipeline's concurrency limit.

        Returns:
            SyncResult with one outcome per entry.

        Raises:
            ValueError: If the concurrency limit is below 1.
        """
        limit = concurrency if concurrency is not None else self.concurrency
        if limit < 1:
            raise ValueError(f"concurrency must be at least 1, got {limit}")

        result = SyncResult()
        entries = list(entries)
        if not entries:
            return result

        logger.info(
            "Syncing %d file(s) to %s/%s with %d worker(s)",
            len(entries), self.store.name, self.target.bucket, limit,
        )

        with ThreadPoolExecutor(
            max_workers=limit, thread_name_prefix="syncdirs3"
        ) as pool:
            pending: dict[Future, tuple[str, FileEntry]] = {
                pool.submit(self.detector.detect, entry): ("detect", entry)
                for entry in entries
            }

            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    stage, entry = pending.pop(future)
                    try:
                        value = future.result()
                    except Exception as exc:
                        self._fail(result, entry, exc)
                        continue

                    if stage == "upload":
                        result.record_updated()
                        self._tick(entry, OUTCOME_UPDATED)
                    elif value.classification == Classification.UNCHANGED:
                        result.record_unchanged()
                        self._tick(entry, OUTCOME_UNCHANGED)
                    else:
                        upload = pool.submit(self._upload, value)
                        pending[upload] = ("upload", entry)

        logger.info(
            "Sync finished: %d of %d processed (%d updated, %d unchanged, %d failed)",
            result.processed, len(entries),
            result.updated, result.unchanged, len(result.failures),
        )
        return result

    def _upload(self, detection: Detection) -> None:
        """Stream one file to the store with its fingerprint metadata.

        The fingerprint is taken from the same handle that is uploaded,
        not from the detection pass.
        """
        entry = detection.entry
        with open(entry.local_path, "rb") as body:
            digest = fingerprint_stream(body)
            body.seek(0)
            if digest != detection.fingerprint:
                logger.debug("%s changed since detection", entry.remote_key)
            meta = RemoteObjectMeta(
                fingerprint=digest,
                uploaded_from=self.uploaded_from,
            )
            self.store.put_object(
                self.target.bucket,
                entry.remote_key,
                body,
                content_type_for(entry.local_path),
                meta,
                acl=self.target.acl,
            )

    def _fail(self, result: SyncResult, entry: FileEntry, exc: Exception) -> None:
        failure = result.record_failure(entry, exc)
        if failure.kind == "error":
            logger.warning(
                "Unexpected error syncing %s", entry.local_path, exc_info=exc
            )
        else:
            logger.info("Failed to sync %s: %s", entry.local_path, failure.error)
        self._tick(entry, OUTCOME_FAILED)

    def _tick(self, entry: FileEntry, outcome: str) -> None:
        if self.on_progress is not None:
            self.on_progress(entry, outcome)
