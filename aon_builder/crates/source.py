"""Source tree snapshots.

A snapshot is the content hash of everything in a crate that can affect the
compiled binary. Build outputs, VCS metadata and editor leftovers are
excluded so they never perturb the cache key.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from aon_builder.crates.manifest import SourceManifest, load_manifest

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = frozenset({"target", ".git", ".direnv", ".idea", ".vscode", "result"})
EXCLUDED_SUFFIXES = (".swp", ".swo", "~", ".orig", ".rej")
EXCLUDED_FILES = frozenset({".DS_Store"})

HASH_CHUNK_SIZE = 64 * 1024  # 64KB


@dataclass(frozen=True)
class SourceSnapshot:
    """Hashed view of a source tree.

    Attributes:
        root: Source tree root.
        manifest: Parsed package manifest.
        content_hash: SHA-256 over relative paths and contents.
        files: Sorted relative POSIX paths that were hashed.
    """

    root: Path
    manifest: SourceManifest
    content_hash: str
    files: tuple[str, ...]


def _is_excluded(relative: Path) -> bool:
    if any(part in EXCLUDED_DIRS for part in relative.parts[:-1]):
        return True
    name = relative.name
    return name in EXCLUDED_FILES or name.endswith(EXCLUDED_SUFFIXES)


def list_source_files(root: Path) -> list[str]:
    """List the files of a source tree that belong in its content hash.

    Args:
        root: Source tree root.

    Returns:
        Sorted relative POSIX paths.
    """
    files: list[str] = []
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        relative = path.relative_to(root)
        if _is_excluded(relative):
            continue
        files.append(relative.as_posix())
    return sorted(files)


def hash_source_tree(root: Path, files: list[str]) -> str:
    """Hash file paths and contents in the given order."""
    sha256 = hashlib.sha256()
    for rel in files:
        encoded = rel.encode("utf-8")
        sha256.update(len(encoded).to_bytes(8, "big"))
        sha256.update(encoded)
        path = root / rel
        sha256.update(path.stat().st_size.to_bytes(8, "big"))
        with path.open("rb") as f:
            while chunk := f.read(HASH_CHUNK_SIZE):
                sha256.update(chunk)
    return sha256.hexdigest()


def snapshot_source(source_tree: Path) -> SourceSnapshot:
    """Parse the manifest and hash a source tree.

    Args:
        source_tree: Crate root directory.

    Returns:
        SourceSnapshot.

    Raises:
        InvalidManifest: If the manifest is missing or incomplete.
    """
    root = source_tree.resolve()
    manifest = load_manifest(root)
    files = list_source_files(root)
    content_hash = hash_source_tree(root, files)
    logger.debug(
        "Snapshot of %s: %d files, hash %s", manifest.tag, len(files), content_hash[:16]
    )
    return SourceSnapshot(
        root=root,
        manifest=manifest,
        content_hash=content_hash,
        files=tuple(files),
    )


__all__ = [
    "EXCLUDED_DIRS",
    "SourceSnapshot",
    "hash_source_tree",
    "list_source_files",
    "snapshot_source",
]
