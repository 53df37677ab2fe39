"""Content-addressed cache store for toolchain components.

This module handles:
- The CacheStore capability injected into the toolchain resolver
- A filesystem store that unpacks component archives under their digest
- An in-memory store for tests and dry runs

Entries are keyed by the SHA-256 of their archive bytes, so writes are
idempotent. Concurrent writers of the same digest race on a final rename;
whichever lands first wins and the others discard their identical copy.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import uuid
from io import BytesIO
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class StoreIntegrityError(ValueError):
    """Raised when data does not hash to the digest it is stored under."""

    def __init__(self, expected: str, actual: str, code: str = "integrity") -> None:
        super().__init__(f"Content hash mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
        self.code = code


def compute_digest(data: bytes) -> str:
    """Return the SHA-256 hex digest of a byte string."""
    return hashlib.sha256(data).hexdigest()


@runtime_checkable
class CacheStore(Protocol):
    """Capability for reading and writing content-addressed components."""

    def contains(self, digest: str) -> bool:
        """Return True if a component with this digest is present."""
        ...

    def put(self, digest: str, data: bytes) -> Path:
        """Store a component archive and return its location."""
        ...

    def location(self, digest: str) -> Path:
        """Return where the component with this digest lives."""
        ...

    def get_index(self, key: str) -> bytes | None:
        """Return a cached toolchain index, if present."""
        ...

    def put_index(self, key: str, data: bytes) -> None:
        """Cache a toolchain index."""
        ...


def _safe_extract(data: bytes, dest_dir: Path) -> None:
    """Extract a gzipped tar archive, refusing path traversal."""
    with tarfile.open(fileobj=BytesIO(data), mode="r:*") as tar:
        for member in tar.getmembers():
            member_path = Path(member.name)
            if member_path.is_absolute() or ".." in member_path.parts:
                raise tarfile.TarError(
                    f"Refusing to extract {member.name}: path traversal detected"
                )
        tar.extractall(dest_dir, filter="data")


class FilesystemCacheStore:
    """Store components unpacked on disk at ``root/<digest>``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def location(self, digest: str) -> Path:
        return self.root / digest

    def contains(self, digest: str) -> bool:
        return self.location(digest).is_dir()

    def put(self, digest: str, data: bytes) -> Path:
        actual = compute_digest(data)
        if actual != digest:
            raise StoreIntegrityError(digest, actual)

        final = self.location(digest)
        if final.is_dir():
            logger.debug("Store already holds %s", digest[:16])
            return final

        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(
            tempfile.mkdtemp(prefix=f".tmp-{digest[:16]}-", dir=self.root)
        )
        try:
            _safe_extract(data, staging)
            try:
                os.rename(staging, final)
            except OSError:
                # Another writer landed the same content first.
                if not final.is_dir():
                    raise
                logger.debug("Lost store race for %s; keeping existing copy", digest[:16])
            else:
                logger.info("Stored component %s at %s", digest[:16], final)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        return final

    def _index_path(self, key: str) -> Path:
        return self.root / ".indexes" / f"{key.replace('/', '__')}.json"

    def get_index(self, key: str) -> bytes | None:
        path = self._index_path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def put_index(self, key: str, data: bytes) -> None:
        path = self._index_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)


class InMemoryCacheStore:
    """Dict-backed store; locations are virtual and never created on disk."""

    def __init__(self, root: Path = Path("/memory-store")) -> None:
        self.root = root
        self.blobs: dict[str, bytes] = {}
        self.indexes: dict[str, bytes] = {}

    def location(self, digest: str) -> Path:
        return self.root / digest

    def contains(self, digest: str) -> bool:
        return digest in self.blobs

    def put(self, digest: str, data: bytes) -> Path:
        actual = compute_digest(data)
        if actual != digest:
            raise StoreIntegrityError(digest, actual)
        self.blobs[digest] = data
        return self.location(digest)

    def get_index(self, key: str) -> bytes | None:
        return self.indexes.get(key)

    def put_index(self, key: str, data: bytes) -> None:
        self.indexes[key] = data


__all__ = [
    "CacheStore",
    "FilesystemCacheStore",
    "InMemoryCacheStore",
    "StoreIntegrityError",
    "compute_digest",
]
