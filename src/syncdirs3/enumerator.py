"""
File enumeration -- which files take part in a run, and under what key.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import socket
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .models import FileEntry, KeyPolicy

logger = logging.getLogger("syncdirs3.enumerator")


def _is_excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    """Match a relative POSIX path against fnmatch patterns.

    A pattern hits if it matches the whole relative path or any single
    component of it, so "__pycache__" prunes every such directory.
    """
    if not patterns:
        return False
    parts = rel_path.split("/")
    for pat in patterns:
        if fnmatch.fnmatch(rel_path, pat):
            return True
        if any(fnmatch.fnmatch(part, pat) for part in parts):
            return True
    return False


def list_files(
    root: Path,
    recursive: bool = False,
    exclude: Sequence[str] = (),
) -> list[Path]:
    """List the candidate files under a directory.

    Args:
        root: Directory to sync.
        recursive: Walk subdirectories instead of listing only the top level.
        exclude: fnmatch patterns for paths to skip.

    Returns:
        Sorted absolute paths of regular files.

    Raises:
        NotADirectoryError: If root is not a directory.
    """
    root = Path(root).expanduser().resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    files: list[Path] = []

    if not recursive:
        for child in root.iterdir():
            if not child.is_file():
                continue
            if _is_excluded(child.name, exclude):
                continue
            files.append(child)
        return sorted(files)

    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        rel_dir = base.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = sorted(
            d for d in dirnames if not _is_excluded(prefix + d, exclude)
        )
        for fname in filenames:
            full_path = base / fname
            if _is_excluded(prefix + fname, exclude):
                continue
            if not full_path.is_file():
                continue
            files.append(full_path)

    logger.debug("Enumerated %d file(s) under %s", len(files), root)
    return sorted(files)


def remote_key(
    root: Path,
    path: Path,
    policy: KeyPolicy = KeyPolicy.HOST,
    prefix: str = "",
    hostname: Optional[str] = None,
) -> str:
    """Derive the object key for a local file.

    HOST keys are the hostname followed by the absolute POSIX path, so
    the same directory synced from two machines never collides.
    RELATIVE keys are the path below the synced root.

    Args:
        root: Directory being synced.
        path: File inside root.
        policy: Key derivation policy.
        prefix: Optional key prefix, joined with "/".
        hostname: Override for the local hostname.

    Returns:
        Object key string.
    """
    root = Path(root).expanduser().resolve()
    path = Path(path)
    if not path.is_absolute():
        path = root / path

    if policy == KeyPolicy.RELATIVE:
        key = path.relative_to(root).as_posix()
    else:
        host = hostname or socket.gethostname()
        key = host + path.as_posix()

    prefix = prefix.strip("/")
    if prefix:
        key = f"{prefix}/{key.lstrip('/')}"
    return key


def build_entries(
    root: Path,
    files: Iterable[Path],
    policy: KeyPolicy = KeyPolicy.HOST,
    prefix: str = "",
    hostname: Optional[str] = None,
) -> list[FileEntry]:
    """Pair each file with its remote key."""
    root = Path(root).expanduser().resolve()
    host = hostname or socket.gethostname()
    return [
        FileEntry(
            local_path=Path(f),
            remote_key=remote_key(root, Path(f), policy, prefix, host),
        )
        for f in files
    ]
