"""Build plans.

A build plan spells out, up front, everything a build-and-wrap run will do:
the single node build and one wrap per requested bundle list. Plans are
composed by a pure function, so two variants (say, a single-bundle and a
multi-bundle deployment) differ only in the bundle lists passed in, never
in the order some configuration fragments happen to be merged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from aon_builder.config import Settings
from aon_builder.crates.service import BuildStep, compose_build_step, execute_build_step
from aon_builder.crates.source import SourceSnapshot
from aon_builder.types import BuildArtifact, ToolchainSpec, WrappedExecutable
from aon_builder.wrappers.service import wrap, wrapper_path_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WrapStep:
    """One wrapper to produce.

    The output directory is only known once the artifact hash is, so the
    step records the wrappers root and bundle list and resolves the path
    at execution time.
    """

    bundle_ids: tuple[str, ...]
    wrappers_dir: Path

    def output_path(self, artifact: BuildArtifact) -> Path:
        return wrapper_path_for(self.wrappers_dir, artifact, self.bundle_ids)


@dataclass(frozen=True)
class BuildPlan:
    """A node build followed by zero or more wraps, in order."""

    build: BuildStep
    wraps: tuple[WrapStep, ...] = ()
    max_workers: int = 1


def compose_build_plan(
    toolchain: ToolchainSpec,
    source: SourceSnapshot,
    bundle_sets: Sequence[Sequence[str]],
    settings: Settings,
) -> BuildPlan:
    """Compose a build plan.

    Args:
        toolchain: Resolved toolchain.
        source: Source snapshot.
        bundle_sets: One ordered bundle-id list per wrapper wanted.
        settings: Application settings.

    Returns:
        BuildPlan.
    """
    wraps = []
    for bundle_ids in bundle_sets:
        if isinstance(bundle_ids, str):
            raise TypeError("each bundle set must be a sequence of strings")
        wraps.append(
            WrapStep(bundle_ids=tuple(bundle_ids), wrappers_dir=settings.wrappers_dir)
        )
    return BuildPlan(
        build=compose_build_step(source, toolchain, settings),
        wraps=tuple(wraps),
        max_workers=settings.max_concurrent_wraps,
    )


def execute_plan(
    plan: BuildPlan,
    force_rebuild: bool = False,
) -> tuple[BuildArtifact, list[WrappedExecutable]]:
    """Execute a build plan.

    Builds (or reuses) the artifact once, then produces every wrapper.
    Wraps share nothing mutable and run in a thread pool; results come
    back in plan order and the first failure propagates.

    Returns:
        Tuple of (artifact, wrappers in plan order).
    """
    artifact, cache_hit = execute_build_step(plan.build, force_rebuild=force_rebuild)
    logger.info(
        "Artifact %s ready (%s); producing %d wrapper(s)",
        artifact.tag,
        "cached" if cache_hit else "built",
        len(plan.wraps),
    )

    def run_wrap(step: WrapStep) -> WrappedExecutable:
        return wrap(artifact, step.bundle_ids, output_path=step.output_path(artifact))

    if plan.max_workers <= 1 or len(plan.wraps) <= 1:
        return artifact, [run_wrap(step) for step in plan.wraps]

    with ThreadPoolExecutor(max_workers=plan.max_workers) as pool:
        wrappers = list(pool.map(run_wrap, plan.wraps))
    return artifact, wrappers


__all__ = ["BuildPlan", "WrapStep", "compose_build_plan", "execute_plan"]
