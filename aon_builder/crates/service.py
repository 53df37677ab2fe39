"""Crate build service.

This module provides the high-level build API:
- compose_build_step(): Pure description of one node build
- execute_build_step(): Run (or reuse) a composed build
- build_or_reuse(): Main entry point - snapshot, compose, execute
- CrateBuilder: Object form of the same pipeline stage

Builds are keyed by cache key. A finished artifact directory is never
modified; a build with the same key reuses it. Concurrent builds of the
same key are serialized with a file lock; different keys (for example
different platforms) proceed independently.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from aon_builder.config import Settings, get_settings
from aon_builder.crates.artifacts import (
    ARTIFACT_MANIFEST,
    generate_manifest,
    install_binary,
    load_artifact,
    write_manifest,
)
from aon_builder.crates.cache_key import compute_cache_key_for_build, short_key
from aon_builder.crates.manifest import MANIFEST_FILENAME
from aon_builder.crates.runner import (
    BuildExecutionError,
    built_binary_path,
    compose_build_env,
    compose_cargo_command,
    read_log_tail,
    run_build,
)
from aon_builder.crates.source import SourceSnapshot, snapshot_source
from aon_builder.errors import BuildFailure
from aon_builder.types import BuildArtifact, ToolchainSpec

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 3600


@dataclass(frozen=True)
class BuildStep:
    """Everything needed to build the node binary once.

    Attributes:
        source: Source snapshot.
        toolchain: Resolved toolchain.
        cache_key: Cache key of all inputs.
        build_inputs: Canonical inputs the key was computed from.
        artifact_dir: Final, content-addressed artifact directory.
        build_dir: Scratch directory for logs and the cargo target dir.
        command: Cargo command.
        environment: Environment overrides for the command.
        timeout: Build timeout in seconds.
    """

    source: SourceSnapshot
    toolchain: ToolchainSpec
    cache_key: str
    build_inputs: dict[str, Any]
    artifact_dir: Path
    build_dir: Path
    command: tuple[str, ...]
    environment: dict[str, str] = field(default_factory=dict)
    timeout: int | None = None

    @property
    def tag(self) -> str:
        return self.source.manifest.tag

    @property
    def target_dir(self) -> Path:
        return self.build_dir / "target"


@contextmanager
def build_lock(
    lock_dir: Path,
    cache_key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Hold an exclusive flock for one cache key.

    Builds for other keys, such as other platforms, never wait on it.

    Raises:
        TimeoutError: If the lock is still held by another build after
            ``timeout`` seconds. ``None`` waits indefinitely.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{short_key(cache_key, 32)}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        if timeout is None:
            fcntl.flock(fd, fcntl.LOCK_EX)
        else:
            deadline = time.monotonic() + timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise TimeoutError(
                            f"Another build of {short_key(cache_key)} held the lock "
                            f"for over {timeout}s"
                        ) from None
                    time.sleep(0.1)
        logger.debug("Locked %s", lock_file.name)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def artifact_dir_for(artifacts_dir: Path, cache_key: str, source: SourceSnapshot) -> Path:
    """Return the content-addressed directory for an artifact."""
    manifest = source.manifest
    dirname = f"{short_key(cache_key)}-{manifest.name}-{manifest.version}"
    return artifacts_dir.absolute() / dirname


def compose_build_step(
    source: SourceSnapshot,
    toolchain: ToolchainSpec,
    settings: Settings,
    build_options: dict[str, Any] | None = None,
) -> BuildStep:
    """Describe a node build without running anything.

    Args:
        source: Source snapshot.
        toolchain: Resolved toolchain.
        settings: Application settings.
        build_options: Additional options folded into the cache key.

    Returns:
        BuildStep.
    """
    cache_key, inputs = compute_cache_key_for_build(source, toolchain, build_options)

    scratch_root = (settings.tmp_dir or settings.artifacts_dir / ".builds").absolute()
    build_dir = scratch_root / short_key(cache_key)
    target_dir = build_dir / "target"

    command = compose_cargo_command(
        manifest_path=source.root / MANIFEST_FILENAME,
        binary_name=source.manifest.name,
        target_triple=toolchain.platform,
        offline=settings.offline,
    )

    return BuildStep(
        source=source,
        toolchain=toolchain,
        cache_key=cache_key,
        build_inputs=inputs.to_dict(),
        artifact_dir=artifact_dir_for(settings.artifacts_dir, cache_key, source),
        build_dir=build_dir,
        command=tuple(command),
        environment=compose_build_env(toolchain, source.root, target_dir),
        timeout=settings.build_timeout,
    )


def _failure(step: BuildStep, message: str, **kwargs: Any) -> BuildFailure:
    return BuildFailure(
        f"{message} while building {step.tag} for {step.toolchain.platform}",
        tag=step.tag,
        platform=step.toolchain.platform,
        **kwargs,
    )


def _install(step: BuildStep, binary: Path) -> BuildArtifact:
    """Stage the artifact directory and move it into place."""
    manifest = step.source.manifest
    parent = step.artifact_dir.parent
    parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=parent))
    try:
        staged_exe = staging / "bin" / manifest.name
        content_hash = install_binary(binary, staged_exe)

        artifact = BuildArtifact(
            executable=step.artifact_dir / "bin" / manifest.name,
            name=manifest.name,
            version=manifest.version,
            content_hash=content_hash,
            cache_key=step.cache_key,
            platform=step.toolchain.platform,
        )
        write_manifest(
            generate_manifest(artifact, step.artifact_dir, step.build_inputs),
            staging / ARTIFACT_MANIFEST,
        )

        if step.artifact_dir.exists():
            # Leftover that failed verification
            shutil.rmtree(step.artifact_dir)
        os.rename(staging, step.artifact_dir)
        return artifact
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)


def execute_build_step(
    step: BuildStep,
    force_rebuild: bool = False,
) -> tuple[BuildArtifact, bool]:
    """Run a composed build, or reuse its artifact.

    Args:
        step: Composed build step.
        force_rebuild: Build even if an artifact with the same key exists.

    Returns:
        Tuple of (BuildArtifact, is_cache_hit).

    Raises:
        BuildFailure: If compilation or installation fails.
    """
    if not force_rebuild:
        cached = load_artifact(step.artifact_dir)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", step.tag, short_key(step.cache_key))
            return cached, True

    lock_dir = step.artifact_dir.parent / ".locks"
    try:
        with build_lock(lock_dir, step.cache_key, timeout=LOCK_TIMEOUT):
            if not force_rebuild:
                cached = load_artifact(step.artifact_dir)
                if cached is not None:
                    logger.info("Cache hit for %s after waiting on lock", step.tag)
                    return cached, True

            logger.info(
                "Building %s for %s (key %s)",
                step.tag,
                step.toolchain.platform,
                short_key(step.cache_key),
            )
            log_path = step.build_dir / "build.log"
            try:
                result = run_build(
                    command=list(step.command),
                    cwd=step.source.root,
                    build_dir=step.build_dir,
                    target_dir=step.target_dir,
                    timeout=step.timeout,
                    env_override=step.environment,
                )
            except BuildExecutionError as e:
                raise _failure(
                    step,
                    str(e),
                    diagnostic=read_log_tail(log_path),
                    exit_code=e.exit_code,
                    log_path=log_path,
                    code=e.code,
                ) from e

            if not result.success:
                raise _failure(
                    step,
                    result.error_message or "Build failed",
                    diagnostic=read_log_tail(result.log_path),
                    exit_code=result.exit_code,
                    log_path=result.log_path,
                )

            binary = built_binary_path(
                result.target_dir, step.toolchain.platform, step.source.manifest.name
            )
            if not binary.is_file():
                raise _failure(
                    step,
                    f"Compiler reported success but produced no binary at {binary}",
                    log_path=result.log_path,
                )

            try:
                artifact = _install(step, binary)
            except OSError as e:
                raise _failure(step, f"Failed to install artifact: {e}") from e
            # Only build.log is kept once the artifact is installed
            shutil.rmtree(step.target_dir, ignore_errors=True)

    except TimeoutError as e:
        raise _failure(step, str(e), code="lock_timeout") from e

    logger.info(
        "Built %s at %s (sha256 %s)",
        artifact.tag,
        artifact.executable,
        artifact.content_hash[:16],
    )
    return artifact, False


def build_or_reuse(
    source_tree: Path,
    toolchain: ToolchainSpec,
    settings: Settings | None = None,
    force_rebuild: bool = False,
) -> tuple[BuildArtifact, bool]:
    """Build the node binary from a source tree, or reuse a cached build.

    This is the main entry point for the build stage. It:
    1. Parses the manifest and hashes the source tree
    2. Computes the cache key from all inputs
    3. Reuses an artifact with the same key if present
    4. Otherwise compiles and installs a new artifact

    Args:
        source_tree: Crate root directory.
        toolchain: Resolved toolchain.
        settings: Application settings.
        force_rebuild: Force rebuild even if cached.

    Returns:
        Tuple of (BuildArtifact, is_cache_hit).

    Raises:
        InvalidManifest: If the manifest is missing or incomplete.
        BuildFailure: If compilation fails.
    """
    if settings is None:
        settings = get_settings()
    source = snapshot_source(source_tree)
    step = compose_build_step(source, toolchain, settings)
    return execute_build_step(step, force_rebuild=force_rebuild)


class CrateBuilder:
    """Build stage of the pipeline."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def build(self, source_tree: Path, toolchain: ToolchainSpec) -> BuildArtifact:
        artifact, _ = build_or_reuse(source_tree, toolchain, self.settings)
        return artifact


__all__ = [
    "BuildStep",
    "CrateBuilder",
    "artifact_dir_for",
    "build_lock",
    "build_or_reuse",
    "compose_build_step",
    "execute_build_step",
]
