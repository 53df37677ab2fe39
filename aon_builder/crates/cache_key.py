"""Cache keys for node builds.

A key is the SHA-256 of a canonical JSON document describing the package,
its source tree and the toolchain it is built with. The key names the
artifact directory, so rebuilding unchanged source with an unchanged
toolchain resolves to the artifact already on disk.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Any

from aon_builder.crates.source import SourceSnapshot
from aon_builder.types import ToolchainSpec

# Bumped whenever the hashed document changes shape
CACHE_KEY_SCHEMA_VERSION = "1"

# Cargo profile used for every node build
BUILD_PROFILE = "release"


@dataclass
class BuildInputs:
    """Everything that can change the compiled binary.

    Serialized to JSON and hashed to produce the cache key.

    Attributes:
        schema_version: Layout version of this document.
        package: Package name and version.
        source_hash: Content hash of the source tree.
        toolchain: Location-independent toolchain fingerprint.
        build_options: Cargo profile and other flags.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    package: dict[str, str] = field(default_factory=dict)
    source_hash: str = ""
    toolchain: dict[str, Any] = field(default_factory=dict)
    build_options: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form, ready for canonical JSON."""
        return asdict(self)


def create_build_inputs(
    source: SourceSnapshot,
    toolchain: ToolchainSpec,
    build_options: dict[str, Any] | None = None,
) -> BuildInputs:
    """Create canonical build inputs.

    Args:
        source: Source snapshot.
        toolchain: Resolved toolchain.
        build_options: Extra options merged over the release profile.

    Returns:
        The normalized inputs.
    """
    options: dict[str, Any] = {"profile": BUILD_PROFILE}
    if build_options:
        options.update(build_options)

    return BuildInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        package={"name": source.manifest.name, "version": source.manifest.version},
        source_hash=source.content_hash,
        toolchain=toolchain.fingerprint(),
        build_options=options,
    )


def compute_cache_key(inputs: BuildInputs) -> str:
    """Hash build inputs into a cache key.

    Keys are sorted and separators compacted, so equal inputs always
    serialize to the same bytes.

    Args:
        inputs: Inputs to hash.

    Returns:
        ``sha256:``-prefixed hex digest.
    """
    document = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(document.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def compute_cache_key_for_build(
    source: SourceSnapshot,
    toolchain: ToolchainSpec,
    build_options: dict[str, Any] | None = None,
) -> tuple[str, BuildInputs]:
    """Compute the cache key directly from source and toolchain.

    Returns:
        The key and the inputs it was computed from.
    """
    inputs = create_build_inputs(source, toolchain, build_options)
    return compute_cache_key(inputs), inputs


def short_key(cache_key: str, length: int = 16) -> str:
    """Return the first hex characters of a cache key."""
    return cache_key.removeprefix("sha256:")[:length]


__all__ = [
    "BUILD_PROFILE",
    "CACHE_KEY_SCHEMA_VERSION",
    "BuildInputs",
    "compute_cache_key",
    "compute_cache_key_for_build",
    "create_build_inputs",
    "short_key",
]
