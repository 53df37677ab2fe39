"""Build runner for compiling the node crate.

This module handles:
- Composing the `cargo build` command for a crate and target
- Composing a reproducible build environment from a resolved toolchain
- Running cargo under that environment, with output appended to build.log
- Killing a build that outlives its timeout and reporting the log tail
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from aon_builder.types import ComponentKind, ToolchainSpec

logger = logging.getLogger(__name__)

# Fixed prefixes that replace machine-specific paths in debug info and panics
REMAPPED_SOURCE_PREFIX = "/build/source"
REMAPPED_TARGET_PREFIX = "/build/target"

# Variables whose override is prepended to the inherited value
PATH_LIKE_VARS = ("PATH",)

DIAGNOSTIC_TAIL_LINES = 40


class BuildExecutionError(Exception):
    """Raised when build execution fails to start or times out."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Result of a build execution.

    Attributes:
        success: Whether the build succeeded.
        exit_code: Process exit code.
        target_dir: Cargo target directory.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
        error_message: Error message if build failed.
    """

    success: bool
    exit_code: int
    target_dir: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None


def compose_cargo_command(
    manifest_path: Path,
    binary_name: str,
    target_triple: str,
    offline: bool = False,
) -> list[str]:
    """Compose the `cargo build` command for the node binary.

    Args:
        manifest_path: Path to the crate's Cargo.toml.
        binary_name: Name of the binary target to build.
        target_triple: Rust target triple.
        offline: Forbid cargo from touching the network.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        "cargo",
        "build",
        "--release",
        "--locked",
        "--target",
        target_triple,
        "--bin",
        binary_name,
        "--manifest-path",
        str(manifest_path),
    ]
    if offline:
        cmd.append("--offline")
    return cmd


def compose_build_env(
    toolchain: ToolchainSpec,
    source_root: Path,
    target_dir: Path,
) -> dict[str, str]:
    """Compose environment overrides for a reproducible build.

    Args:
        toolchain: Resolved toolchain.
        source_root: Crate root directory.
        target_dir: Cargo target directory (outside the source tree).

    Returns:
        Environment variables to set on top of the inherited environment.
    """
    env: dict[str, str] = {
        "CARGO_TARGET_DIR": str(target_dir),
        "CARGO_INCREMENTAL": "0",
        "SOURCE_DATE_EPOCH": "0",
        # Unit-separated so paths with spaces survive
        "CARGO_ENCODED_RUSTFLAGS": "\x1f".join(
            [
                f"--remap-path-prefix={source_root}={REMAPPED_SOURCE_PREFIX}",
                f"--remap-path-prefix={target_dir}={REMAPPED_TARGET_PREFIX}",
            ]
        ),
    }

    bin_dirs: list[str] = []

    compiler = toolchain.component(ComponentKind.COMPILER)
    if compiler is not None:
        bin_dirs.append(str(compiler.path / "bin"))
        env["RUSTC"] = str(compiler.path / "bin" / "rustc")

    linker = toolchain.component(ComponentKind.LINKER)
    if linker is not None:
        bin_dirs.append(str(linker.path / "bin"))
        cc = str(linker.path / "bin" / "cc")
        env["CC"] = cc
        triple_var = toolchain.platform.upper().replace("-", "_")
        env[f"CARGO_TARGET_{triple_var}_LINKER"] = cc

    if bin_dirs:
        env["PATH"] = os.pathsep.join(bin_dirs)

    if toolchain.library_search_paths:
        env["LIBRARY_PATH"] = os.pathsep.join(
            str(p) for p in toolchain.library_search_paths
        )
        env["PKG_CONFIG_PATH"] = os.pathsep.join(
            str(p / "pkgconfig") for p in toolchain.library_search_paths
        )

    for comp in toolchain.components:
        if comp.kind == ComponentKind.LIBRARY and comp.name == "openssl":
            env["OPENSSL_DIR"] = str(comp.path)
            env["OPENSSL_NO_VENDOR"] = "1"

    return env


def merge_env(env_override: dict[str, str] | None) -> dict[str, str] | None:
    """Merge overrides into the inherited environment.

    PATH-like overrides are prepended to the inherited value.

    Returns:
        Full environment, or None to inherit unchanged.
    """
    if not env_override:
        return None
    env = dict(os.environ)
    for key, value in env_override.items():
        inherited = env.get(key)
        if key in PATH_LIKE_VARS and inherited:
            env[key] = f"{value}{os.pathsep}{inherited}"
        else:
            env[key] = value
    return env


def built_binary_path(target_dir: Path, target_triple: str, binary_name: str) -> Path:
    """Return where cargo leaves the release binary."""
    return target_dir / target_triple / "release" / binary_name


def read_log_tail(log_path: Path, lines: int = DIAGNOSTIC_TAIL_LINES) -> str:
    """Return the last lines of a build log."""
    try:
        with log_path.open(encoding="utf-8", errors="replace") as f:
            return "".join(deque(f, maxlen=lines)).rstrip()
    except OSError:
        return ""


def run_build(
    command: list[str],
    cwd: Path,
    build_dir: Path,
    target_dir: Path,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> BuildResult:
    """Execute a cargo build.

    Args:
        command: Command to run.
        cwd: Working directory (the crate root; it is not written to).
        build_dir: Directory for logs.
        target_dir: Cargo target directory.
        timeout: Build timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If the build times out or fails to start.
    """
    build_dir.mkdir(parents=True, exist_ok=True)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = build_dir / "build.log"

    cmd_str = shlex.join(command)
    logger.info("Running %s (target dir %s)", cmd_str, target_dir)

    started_at = datetime.now(timezone.utc)
    with log_path.open("w") as log_file:
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Crate: {cwd}\n")
        log_file.write(f"# Target dir: {target_dir}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n\n")
        log_file.flush()
        try:
            exit_code = subprocess.run(
                command,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=merge_env(env_override),
                check=False,
            ).returncode
        except subprocess.TimeoutExpired as e:
            log_file.write(f"\n# TIMEOUT: cargo killed after {timeout}s\n")
            logger.error("cargo timed out after %ss, log at %s", timeout, log_path)
            raise BuildExecutionError(
                f"Build timed out after {timeout} seconds",
                exit_code=-1,
                code="build_timeout",
            ) from e
        except OSError as e:
            log_file.write(f"\n# Could not start cargo: {e}\n")
            logger.error("Could not start cargo: %s", e)
            raise BuildExecutionError(
                f"Failed to execute build: {e}",
                exit_code=None,
                code="execution_error",
            ) from e

        finished_at = datetime.now(timezone.utc)
        log_file.write(f"\n# Exit code: {exit_code}\n")
        log_file.write(f"# Finished: {finished_at.isoformat()}\n")

    error_message = None
    if exit_code != 0:
        error_message = f"cargo exited with code {exit_code}"
        logger.error("%s, log at %s", error_message, log_path)

    return BuildResult(
        success=exit_code == 0,
        exit_code=exit_code,
        target_dir=target_dir,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


__all__ = [
    "BuildExecutionError",
    "BuildResult",
    "built_binary_path",
    "compose_build_env",
    "compose_cargo_command",
    "merge_env",
    "read_log_tail",
    "run_build",
]
