"""Shared type definitions for aon_builder.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ComponentKind(str, Enum):
    """Role of a toolchain component in the build environment."""

    COMPILER = "compiler"
    LINKER = "linker"
    LIBRARY = "library"


class ValidationStatus(str, Enum):
    """Outcome of the validation harness."""

    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class Platform:
    """A build target platform.

    Attributes:
        system: Short system name (e.g. 'x86_64-linux').
        triple: Rust target triple (e.g. 'x86_64-unknown-linux-gnu').
        arch: CPU architecture.
        os: Operating system family ('linux' or 'darwin').
    """

    system: str
    triple: str
    arch: str
    os: str


@dataclass(frozen=True)
class ToolchainComponent:
    """One resolved member of a toolchain closure."""

    name: str
    kind: ComponentKind
    digest: str
    path: Path


@dataclass(frozen=True)
class ToolchainSpec:
    """A resolved build environment.

    Attributes:
        compiler: Compiler identity (e.g. 'rustc').
        compiler_version: Declared compiler version.
        platform: Rust target triple the toolchain builds for.
        library_search_paths: Directories holding the native library closure.
        components: Every resolved component, compiler and linker included.
    """

    compiler: str
    compiler_version: str
    platform: str
    library_search_paths: tuple[Path, ...] = ()
    components: tuple[ToolchainComponent, ...] = ()

    def component(self, kind: ComponentKind) -> ToolchainComponent | None:
        """Return the first component of the given kind, if any."""
        for comp in self.components:
            if comp.kind == kind:
                return comp
        return None

    def fingerprint(self) -> dict[str, Any]:
        """Return the location-independent identity of this toolchain.

        Store locations differ between machines; component digests do not.
        """
        return {
            "compiler": self.compiler,
            "compiler_version": self.compiler_version,
            "platform": self.platform,
            "components": sorted(
                [
                    {"name": c.name, "kind": c.kind.value, "digest": c.digest}
                    for c in self.components
                ],
                key=lambda c: (c["kind"], c["name"]),
            ),
        }


@dataclass(frozen=True)
class BuildArtifact:
    """The compiled node executable.

    Attributes:
        executable: Path to the binary.
        name: Package name from the source manifest.
        version: Package version from the source manifest.
        content_hash: SHA-256 of the executable bytes.
        cache_key: Cache key of the inputs that produced it.
        platform: Target triple it was compiled for.
    """

    executable: Path
    name: str
    version: str
    content_hash: str
    cache_key: str = ""
    platform: str = ""

    @property
    def tag(self) -> str:
        """Return the 'name@version' tag."""
        return f"{self.name}@{self.version}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "executable": str(self.executable),
            "name": self.name,
            "version": self.version,
            "content_hash": self.content_hash,
            "cache_key": self.cache_key,
            "platform": self.platform,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildArtifact:
        """Rebuild an artifact from its serialized form."""
        return cls(
            executable=Path(data["executable"]),
            name=data["name"],
            version=data["version"],
            content_hash=data["content_hash"],
            cache_key=data.get("cache_key", ""),
            platform=data.get("platform", ""),
        )


@dataclass(frozen=True)
class BundleDescriptor:
    """An externally supplied bundle reference.

    The pipeline never looks inside; only ``identifier`` is used.
    """

    identifier: str | os.PathLike[str]
    sub_components: tuple[str, ...] = ()

    def as_argument(self) -> str:
        """Return the identifier as a command-line argument."""
        return os.fspath(self.identifier)


@dataclass(frozen=True)
class WrappedExecutable:
    """A wrapper that runs an artifact with bundle ids prepended."""

    path: Path
    bundle_ids: tuple[str, ...]
    artifact: BuildArtifact

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "path": str(self.path),
            "bundle_ids": list(self.bundle_ids),
            "artifact": self.artifact.to_dict(),
        }


@dataclass
class ValidationResult:
    """Result of a validation harness run."""

    status: ValidationStatus
    reason: str | None = None
    wrapper: WrappedExecutable | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status == ValidationStatus.PASS


__all__ = [
    "BuildArtifact",
    "BundleDescriptor",
    "ComponentKind",
    "Platform",
    "ToolchainComponent",
    "ToolchainSpec",
    "ValidationResult",
    "ValidationStatus",
    "WrappedExecutable",
]
