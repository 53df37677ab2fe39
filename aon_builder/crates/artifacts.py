"""Artifact installation and manifest handling.

This module handles:
- Installing the compiled binary into an artifact directory
- Normalizing file metadata for reproducibility
- Computing checksums
- Writing and reading artifact manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from aon_builder.types import BuildArtifact

logger = logging.getLogger(__name__)

ARTIFACT_MANIFEST = "artifact.json"
ARTIFACT_MANIFEST_VERSION = "1.0"
EXECUTABLE_MODE = 0o755

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def install_binary(source: Path, dest: Path, mtime: int = 0) -> str:
    """Copy a built binary into place with normalized metadata.

    Args:
        source: Binary produced by the compiler.
        dest: Destination path.
        mtime: Timestamp applied to the copy (SOURCE_DATE_EPOCH).

    Returns:
        SHA-256 of the installed binary.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, dest)
    os.chmod(dest, EXECUTABLE_MODE)
    os.utime(dest, (mtime, mtime))
    digest = compute_file_hash(dest)
    logger.debug("Installed %s (sha256 %s)", dest, digest[:16])
    return digest


def generate_manifest(
    artifact: BuildArtifact,
    artifact_dir: Path,
    build_inputs: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate an artifact manifest.

    The manifest carries no timestamps so identical builds produce identical
    manifests. The executable path is stored relative to the artifact
    directory.

    Args:
        artifact: The artifact to describe.
        artifact_dir: Directory the manifest will live in.
        build_inputs: Optional build inputs dictionary.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    try:
        executable = artifact.executable.relative_to(artifact_dir).as_posix()
    except ValueError:
        executable = str(artifact.executable)

    manifest: dict[str, Any] = {
        "version": ARTIFACT_MANIFEST_VERSION,
        "name": artifact.name,
        "package_version": artifact.version,
        "executable": executable,
        "content_hash": artifact.content_hash,
        "cache_key": artifact.cache_key,
        "platform": artifact.platform,
    }
    if build_inputs:
        manifest["build_inputs"] = build_inputs
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
        f.write("\n")

    logger.info("Wrote manifest to %s", output_path)
    return output_path


def load_artifact(artifact_dir: Path, verify: bool = True) -> BuildArtifact | None:
    """Load an artifact from its directory.

    Args:
        artifact_dir: Directory containing artifact.json.
        verify: Re-hash the executable and reject mismatches.

    Returns:
        BuildArtifact, or None if the directory holds no usable artifact.
    """
    manifest_path = artifact_dir / ARTIFACT_MANIFEST
    if not manifest_path.is_file():
        return None

    try:
        with manifest_path.open(encoding="utf-8") as f:
            data = json.load(f)
        executable = artifact_dir.absolute() / data["executable"]
        artifact = BuildArtifact(
            executable=executable,
            name=data["name"],
            version=data["package_version"],
            content_hash=data["content_hash"],
            cache_key=data.get("cache_key", ""),
            platform=data.get("platform", ""),
        )
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring unreadable artifact manifest %s: %s", manifest_path, e)
        return None

    if verify:
        if not executable.is_file():
            logger.warning("Artifact executable missing: %s", executable)
            return None
        actual = compute_file_hash(executable)
        if actual != artifact.content_hash:
            logger.warning(
                "Artifact %s hash mismatch: manifest %s, disk %s",
                artifact.tag,
                artifact.content_hash[:16],
                actual[:16],
            )
            return None

    return artifact


__all__ = [
    "ARTIFACT_MANIFEST",
    "EXECUTABLE_MODE",
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "generate_manifest",
    "install_binary",
    "load_artifact",
    "write_manifest",
]
