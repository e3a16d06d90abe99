"""
Pydantic models shared across the sync run.

Credentials, target, entries and remote metadata are immutable once
built. The only mutable run state lives in the pipeline's SyncResult.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

FINGERPRINT_META_KEY = "sha256"
UPLOADER_META_KEY = "uploaded-from"


class KeyPolicy(str, Enum):
    """How a local path becomes a remote object key."""

    HOST = "host"
    RELATIVE = "relative"


class StoreType(str, Enum):
    """Supported remote object stores."""

    S3 = "s3"
    LOCAL = "local"


class Classification(str, Enum):
    """Outcome of comparing a local file with its remote copy."""

    UNCHANGED = "unchanged"
    NEEDS_UPLOAD = "needs_upload"


class CredentialRecord(BaseModel):
    """Access key pair for the remote store."""

    model_config = ConfigDict(frozen=True)

    access_key: str
    secret_key: str

    def __repr__(self) -> str:
        return f"CredentialRecord(access_key={self.access_key!r}, secret_key='***')"

    __str__ = __repr__


class SyncTarget(BaseModel):
    """Bucket and visibility for one run."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    public_read: bool = False

    @property
    def acl(self) -> str:
        return "public-read" if self.public_read else "private"


class FileEntry(BaseModel):
    """A local file paired with its remote key."""

    model_config = ConfigDict(frozen=True)

    local_path: Path
    remote_key: str


class RemoteObjectMeta(BaseModel):
    """Sidecar metadata stored with every uploaded object."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    uploaded_from: str = ""

    def to_metadata(self) -> dict[str, str]:
        """Render as S3 user metadata."""
        return {
            FINGERPRINT_META_KEY: self.fingerprint,
            UPLOADER_META_KEY: self.uploaded_from,
        }

    @classmethod
    def from_metadata(cls, metadata: Optional[dict]) -> Optional["RemoteObjectMeta"]:
        """Parse S3 user metadata; None when no fingerprint was stored."""
        if not metadata:
            return None
        lowered = {str(k).lower(): str(v) for k, v in metadata.items()}
        fingerprint = lowered.get(FINGERPRINT_META_KEY)
        if not fingerprint:
            return None
        return cls(
            fingerprint=fingerprint,
            uploaded_from=lowered.get(UPLOADER_META_KEY, ""),
        )


class FileFailure(BaseModel):
    """One file that could not be synced, and why."""

    model_config = ConfigDict(frozen=True)

    entry: FileEntry
    error: str
    kind: str = "remote"


class SyncDirConfig(BaseModel):
    """Defaults loaded from config.yaml; CLI flags override them."""

    store: StoreType = StoreType.S3
    bucket: Optional[str] = None
    public: bool = False
    concurrency: Optional[int] = Field(default=None, ge=1)
    key_policy: KeyPolicy = KeyPolicy.HOST
    key_prefix: str = ""
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    server_side_encryption: str = "AES256"
    local_root: Optional[Path] = None
    exclude: list[str] = Field(default_factory=list)


class SyncRunState(BaseModel):
    """Outcome of the most recent run, persisted to state.json."""

    last_run: Optional[datetime] = None
    last_bucket: Optional[str] = None
    last_directory: Optional[str] = None
    run_count: int = 0
    last_updated: int = 0
    last_unchanged: int = 0
    last_failed: int = 0
    last_failures: list[dict] = Field(default_factory=list)
    last_error: Optional[str] = None
