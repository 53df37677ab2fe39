"""Bundle wrapper service.

This module provides the wrap API:
- wrap(): Produce a wrapper executable for an artifact and bundle list
- inspect_wrapper(): Read back what a wrapper embeds

Wrappers never copy or relink the artifact. Each distinct bundle list gets
its own output directory, so wraps of one artifact are independent and may
run in parallel.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from aon_builder.config import Settings, get_settings
from aon_builder.errors import ArtifactNotFound, WrapFailure
from aon_builder.types import BuildArtifact, WrappedExecutable
from aon_builder.wrappers.script import read_wrapper, render_wrapper, wrapper_dirname

logger = logging.getLogger(__name__)

WRAPPER_MODE = 0o755


def wrapper_path_for(
    wrappers_dir: Path,
    artifact: BuildArtifact,
    bundle_ids: Sequence[str],
) -> Path:
    """Return where the wrapper for an artifact and bundle list lives."""
    dirname = wrapper_dirname(artifact.content_hash, bundle_ids)
    return wrappers_dir / dirname / "bin" / artifact.name


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.chmod(tmp, WRAPPER_MODE)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def wrap(
    artifact: BuildArtifact,
    bundle_ids: Sequence[str],
    wrappers_dir: Path | None = None,
    output_path: Path | None = None,
) -> WrappedExecutable:
    """Produce a wrapper that runs an artifact with bundle ids prepended.

    The identifiers are embedded exactly as given: same order, duplicates
    kept, no validation. An empty list is valid.

    Args:
        artifact: Artifact to wrap.
        bundle_ids: Ordered bundle identifiers.
        wrappers_dir: Root for wrapper outputs (defaults to settings).
        output_path: Explicit wrapper path; overrides wrappers_dir.

    Returns:
        WrappedExecutable.

    Raises:
        ArtifactNotFound: If the artifact executable does not exist.
        WrapFailure: If the wrapper cannot be written.
    """
    if isinstance(bundle_ids, str):
        raise TypeError("bundle_ids must be a sequence of strings, not a string")
    ids = tuple(bundle_ids)

    if not artifact.executable.is_file():
        raise ArtifactNotFound(artifact.executable, tag=artifact.tag)
    # The wrapper may be run from any working directory
    executable = artifact.executable.absolute()

    if output_path is None:
        if wrappers_dir is None:
            wrappers_dir = get_settings().wrappers_dir
        output_path = wrapper_path_for(wrappers_dir, artifact, ids)

    try:
        _write_atomic(output_path, render_wrapper(executable, ids))
    except OSError as e:
        label = ", ".join(ids) if ids else "(no bundles)"
        raise WrapFailure(
            f"Failed to write wrapper for {label} around {artifact.tag}: {e}",
            bundle_ids=ids,
            path=output_path,
        ) from e

    logger.info(
        "Wrapped %s for %d bundle(s) at %s", artifact.tag, len(ids), output_path
    )
    return WrappedExecutable(path=output_path, bundle_ids=ids, artifact=artifact)


def inspect_wrapper(path: Path) -> tuple[Path, tuple[str, ...]]:
    """Return the (artifact path, bundle ids) a wrapper embeds.

    Raises:
        WrapFailure: If the file is missing or is not a wrapper.
    """
    try:
        info = read_wrapper(path)
    except (OSError, ValueError) as e:
        raise WrapFailure(f"Cannot inspect wrapper {path}: {e}", path=path) from e
    return info.artifact_path, info.bundle_ids


class BundleWrapper:
    """Wrap stage of the pipeline."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def wrap(
        self, artifact: BuildArtifact, bundle_ids: Sequence[str]
    ) -> WrappedExecutable:
        return wrap(artifact, bundle_ids, wrappers_dir=self.settings.wrappers_dir)


__all__ = ["BundleWrapper", "inspect_wrapper", "wrap", "wrapper_path_for"]
