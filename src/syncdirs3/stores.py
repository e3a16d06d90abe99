"""
Object stores -- where the files land.

Each store knows how to read an object's sidecar metadata and how to
put a new object. The orchestrator picks one based on config.

S3: Any S3-compatible service through boto3.
Local: Plain filesystem tree with JSON sidecars. For USB drives, NAS, etc.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
import platform
import shutil
import socket
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import CredentialRecord, RemoteObjectMeta, StoreType, SyncDirConfig

logger = logging.getLogger("syncdirs3.stores")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class RemoteError(Exception):
    """Raised when the remote store rejects or fails a request."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


def content_type_for(path: Path) -> str:
    """Guess a Content-Type from the file extension."""
    guessed, _ = mimetypes.guess_type(str(path))
    return guessed or DEFAULT_CONTENT_TYPE


def uploader_info() -> str:
    """Describe this machine, e.g. "box (Linux 6.1.0)"."""
    return f"{socket.gethostname()} ({platform.system()} {platform.release()})"


class ObjectStore(ABC):
    """Abstract remote object store."""

    @abstractmethod
    def head_object(self, bucket: str, key: str) -> Optional[RemoteObjectMeta]:
        """Fetch the sidecar metadata of an object.

        Args:
            bucket: Target bucket.
            key: Object key.

        Returns:
            Stored metadata, or None if the object (or its fingerprint)
            does not exist.

        Raises:
            RemoteError: On any failure other than "not found".
        """

    @abstractmethod
    def put_object(
        self,
        bucket: str,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: RemoteObjectMeta,
        acl: str = "private",
    ) -> None:
        """Upload an object with metadata and ACL.

        Raises:
            RemoteError: If the upload fails.
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable store name."""


class S3ObjectStore(ObjectStore):
    """S3 (or S3-compatible) store backed by a boto3 client."""

    def __init__(
        self,
        credentials: Optional[CredentialRecord] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        server_side_encryption: str = "AES256",
        client=None,
    ):
        if client is None:
            session_kwargs = {}
            if credentials is not None:
                session_kwargs["aws_access_key_id"] = credentials.access_key
                session_kwargs["aws_secret_access_key"] = credentials.secret_key
            if region:
                session_kwargs["region_name"] = region
            session = boto3.session.Session(**session_kwargs)
            client = session.client(
                "s3",
                endpoint_url=endpoint_url,
                use_ssl=True,
                config=Config(signature_version="s3v4"),
            )
        self._client = client
        self.server_side_encryption = server_side_encryption

    @property
    def name(self) -> str:
        return "s3"

    def head_object(self, bucket: str, key: str) -> Optional[RemoteObjectMeta]:
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return None
            raise RemoteError(key, str(exc)) from exc
        except BotoCoreError as exc:
            raise RemoteError(key, str(exc)) from exc

        meta = RemoteObjectMeta.from_metadata(response.get("Metadata"))
        if meta:
            logger.debug("Existing fingerprint for %s: %s", key, meta.fingerprint)
        return meta

    def put_object(
        self,
        bucket: str,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: RemoteObjectMeta,
        acl: str = "private",
    ) -> None:
        params = {
            "Bucket": bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "Metadata": metadata.to_metadata(),
            "ACL": acl,
        }
        if self.server_side_encryption:
            params["ServerSideEncryption"] = self.server_side_encryption

        logger.debug(
            "put_object bucket=%s key=%s type=%s acl=%s",
            bucket, key, content_type, acl,
        )
        try:
            self._client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise RemoteError(key, str(exc)) from exc


class LocalObjectStore(ObjectStore):
    """Filesystem store for USB, NAS, or mounted drives.

    Objects live at <root>/<bucket>/<key>; metadata, content type and
    ACL sit next to each object in a ".meta.json" sidecar.
    """

    SIDECAR_SUFFIX = ".meta.json"

    def __init__(self, root: Path):
        self.root = Path(root).expanduser()

    @property
    def name(self) -> str:
        return "local"

    def object_path(self, bucket: str, key: str) -> Path:
        """Resolve the on-disk path for an object, refusing escapes."""
        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / key.lstrip("/")).resolve()
        if target != bucket_dir and bucket_dir not in target.parents:
            raise RemoteError(key, "key escapes the bucket directory")
        return target

    def _sidecar(self, object_path: Path) -> Path:
        return object_path.with_name(object_path.name + self.SIDECAR_SUFFIX)

    def head_object(self, bucket: str, key: str) -> Optional[RemoteObjectMeta]:
        object_path = self.object_path(bucket, key)
        sidecar = self._sidecar(object_path)
        if not object_path.exists() or not sidecar.exists():
            return None
        try:
            data = json.loads(sidecar.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RemoteError(key, f"unreadable metadata: {exc}") from exc
        return RemoteObjectMeta.from_metadata(data.get("metadata"))

    def put_object(
        self,
        bucket: str,
        key: str,
        body: BinaryIO,
        content_type: str,
        metadata: RemoteObjectMeta,
        acl: str = "private",
    ) -> None:
        object_path = self.object_path(bucket, key)
        try:
            object_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=object_path.parent, prefix=".upload-"
            )
            try:
                with os.fdopen(fd, "wb") as handle:
                    shutil.copyfileobj(body, handle)
                os.replace(tmp_name, object_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

            sidecar = {
                "content_type": content_type,
                "acl": acl,
                "metadata": metadata.to_metadata(),
            }
            self._sidecar(object_path).write_text(
                json.dumps(sidecar, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            raise RemoteError(key, str(exc)) from exc

        logger.debug("Stored %s in local store %s", key, self.root)


def create_store(
    config: SyncDirConfig,
    credentials: Optional[CredentialRecord] = None,
) -> ObjectStore:
    """Factory function to create the configured store.

    Args:
        config: Sync configuration.
        credentials: Access key pair for remote stores.

    Returns:
        Instantiated ObjectStore.

    Raises:
        ValueError: If the store type is not supported or misconfigured.
    """
    if config.store == StoreType.S3:
        return S3ObjectStore(
            credentials=credentials,
            region=config.region,
            endpoint_url=config.endpoint_url,
            server_side_encryption=config.server_side_encryption,
        )
    if config.store == StoreType.LOCAL:
        if not config.local_root:
            raise ValueError("local store requires local_root in config")
        return LocalObjectStore(config.local_root)
    raise ValueError(f"Unsupported store: {config.store}")
