"""Builder entry points.

NodePipeline is the surface a calling build system uses: build the node
artifact for a platform once, then wrap it for as many bundle lists as
there are deployments.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from pathlib import Path

import httpx

from aon_builder.config import Settings, get_settings
from aon_builder.crates.artifacts import load_artifact
from aon_builder.crates.service import compose_build_step, execute_build_step
from aon_builder.crates.source import snapshot_source
from aon_builder.errors import ArtifactNotFound, InvalidManifest
from aon_builder.plan import BuildPlan, compose_build_plan, execute_plan
from aon_builder.toolchain.resolver import ToolchainResolver
from aon_builder.toolchain.store import CacheStore, FilesystemCacheStore
from aon_builder.types import (
    BuildArtifact,
    BundleDescriptor,
    ToolchainSpec,
    WrappedExecutable,
)
from aon_builder.wrappers.service import wrap

logger = logging.getLogger(__name__)

BundleRef = str | os.PathLike[str] | BundleDescriptor


def bundle_argument(bundle: BundleRef) -> str:
    """Turn a bundle reference into the argument passed to the node.

    The reference is not inspected: descriptors contribute their identifier,
    paths their string form.
    """
    if isinstance(bundle, BundleDescriptor):
        return bundle.as_argument()
    if isinstance(bundle, str):
        return bundle
    if isinstance(bundle, os.PathLike):
        return os.fspath(bundle)
    raise TypeError(f"Unsupported bundle reference: {bundle!r}")


def bundle_arguments(bundles: Iterable[BundleRef]) -> list[str]:
    """Convert bundle references, keeping order and duplicates."""
    if isinstance(bundles, (str, os.PathLike, BundleDescriptor)):
        raise TypeError("expected a sequence of bundle references, got a single one")
    return [bundle_argument(b) for b in bundles]


class NodePipeline:
    """Build-once, wrap-many pipeline for the node binary.

    Args:
        source_tree: Crate root; required for build_artifact().
        settings: Application settings.
        store: Cache store for toolchain components.
        client: Optional HTTPX client for the remote store.
        compiler_version: Declared compiler version (defaults to settings).
        artifact: An already built artifact to wrap.
    """

    def __init__(
        self,
        source_tree: Path | None = None,
        settings: Settings | None = None,
        store: CacheStore | None = None,
        client: httpx.Client | None = None,
        compiler_version: str | None = None,
        artifact: BuildArtifact | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.source_tree = source_tree
        self.store = store or FilesystemCacheStore(self.settings.cache_dir)
        self.resolver = ToolchainResolver(self.store, settings=self.settings, client=client)
        self.compiler_version = compiler_version or self.settings.compiler_version
        self.artifact = artifact

    @classmethod
    def from_artifact(
        cls,
        artifact_dir: Path,
        settings: Settings | None = None,
    ) -> NodePipeline:
        """Create a pipeline around a previously built artifact.

        Raises:
            ArtifactNotFound: If the directory holds no valid artifact.
        """
        artifact = load_artifact(artifact_dir)
        if artifact is None:
            raise ArtifactNotFound(artifact_dir)
        return cls(settings=settings, artifact=artifact)

    def _source(self) -> Path:
        if self.source_tree is None:
            raise InvalidManifest("No source tree configured for this pipeline")
        return self.source_tree

    def resolve_toolchain(self, platform: str) -> ToolchainSpec:
        return self.resolver.resolve(self.compiler_version, platform)

    def build_artifact(self, platform: str, force_rebuild: bool = False) -> BuildArtifact:
        """Build (or reuse) the node artifact for a platform.

        Raises:
            UnsupportedPlatform: No toolchain for the platform.
            DependencyResolutionError: Toolchain closure cannot be resolved.
            InvalidManifest: Source manifest is missing or incomplete.
            BuildFailure: Compilation failed.
        """
        source = snapshot_source(self._source())
        toolchain = self.resolve_toolchain(platform)
        step = compose_build_step(source, toolchain, self.settings)
        artifact, _ = execute_build_step(step, force_rebuild=force_rebuild)
        self.artifact = artifact
        return artifact

    def wrap_for_bundles(self, bundle_identifiers: Sequence[BundleRef]) -> WrappedExecutable:
        """Wrap the current artifact for an ordered list of bundles.

        Raises:
            ArtifactNotFound: No artifact built yet, or its executable is gone.
            WrapFailure: The wrapper could not be written.
        """
        if self.artifact is None:
            raise ArtifactNotFound()
        return wrap(
            self.artifact,
            bundle_arguments(bundle_identifiers),
            wrappers_dir=self.settings.wrappers_dir,
        )

    def wrap_for_single_bundle(self, bundle_identifier: BundleRef) -> WrappedExecutable:
        """Wrap the current artifact for one bundle."""
        return self.wrap_for_bundles([bundle_identifier])

    def plan(
        self,
        platform: str,
        bundle_sets: Sequence[Sequence[BundleRef]],
    ) -> BuildPlan:
        """Compose the build plan for a platform and a set of deployments."""
        source = snapshot_source(self._source())
        toolchain = self.resolve_toolchain(platform)
        return compose_build_plan(
            toolchain,
            source,
            [bundle_arguments(bundles) for bundles in bundle_sets],
            self.settings,
        )

    def build_and_wrap(
        self,
        platform: str,
        bundle_sets: Sequence[Sequence[BundleRef]],
        force_rebuild: bool = False,
    ) -> tuple[BuildArtifact, list[WrappedExecutable]]:
        """Build once for a platform and wrap for every bundle list."""
        artifact, wrappers = execute_plan(
            self.plan(platform, bundle_sets), force_rebuild=force_rebuild
        )
        self.artifact = artifact
        return artifact, wrappers


__all__ = ["BundleRef", "NodePipeline", "bundle_argument", "bundle_arguments"]
