"""Validation harness.

Exercises the wrap stage end-to-end with a synthetic bundle, so CI can
check the pipeline without any externally hosted bundle. The fixture is a
bundle manifest with no roles; the node is never run against it, the
harness only checks a wrapper could be produced.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from aon_builder.errors import PipelineError
from aon_builder.types import (
    BundleDescriptor,
    ValidationResult,
    ValidationStatus,
    WrappedExecutable,
)

if TYPE_CHECKING:
    from aon_builder.pipeline import NodePipeline

logger = logging.getLogger(__name__)

FIXTURE_NAME = "aon-validation-fixture"
FIXTURE_MANIFEST_FILENAME = "happ.yaml"

WrapEntry = Callable[[Sequence[str]], WrappedExecutable]


def fixture_manifest() -> dict[str, Any]:
    """Return the fixed manifest shape of the synthetic bundle."""
    return {
        "manifest_version": "1",
        "name": FIXTURE_NAME,
        "description": None,
        "roles": [],
    }


def write_fixture_bundle(directory: Path) -> BundleDescriptor:
    """Write the synthetic bundle manifest into a directory.

    Args:
        directory: Where to write the manifest.

    Returns:
        BundleDescriptor pointing at the manifest.
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / FIXTURE_MANIFEST_FILENAME
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(fixture_manifest(), f, sort_keys=False)
    return BundleDescriptor(identifier=str(path))


@contextmanager
def fixture_bundle(tmp_dir: Path | None = None) -> Iterator[BundleDescriptor]:
    """Provide a synthetic bundle that is removed afterwards."""
    if tmp_dir is not None:
        tmp_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="aon-fixture-", dir=tmp_dir) as d:
        yield write_fixture_bundle(Path(d))


def _fail(reason: str, **kwargs: Any) -> ValidationResult:
    logger.error("Validation failed: %s", reason)
    return ValidationResult(status=ValidationStatus.FAIL, reason=reason, **kwargs)


def _discard_wrapper(path: Path) -> None:
    """Remove a validation wrapper along with its bundle-set directory."""
    try:
        path.unlink(missing_ok=True)
        if path.parent.name == "bin":
            path.parent.rmdir()
            path.parent.parent.rmdir()
    except OSError as e:
        logger.debug("Validation wrapper not fully removed: %s", e)


def validate(
    wrap_entry: WrapEntry,
    tmp_dir: Path | None = None,
) -> ValidationResult:
    """Run the validation harness against a wrap entry point.

    The wrapper produced for the fixture points at a bundle that no longer
    exists once the harness returns, so it is removed again. The result
    still records where it was written.

    Args:
        wrap_entry: Callable taking an ordered list of bundle ids and
            returning a WrappedExecutable (e.g. NodePipeline.wrap_for_bundles).
        tmp_dir: Parent directory for the fixture; created if missing.

    Returns:
        PASS if a wrapper for the fixture was produced, FAIL with the reason
        otherwise. Nothing raised by the wrap entry escapes.
    """
    try:
        with fixture_bundle(tmp_dir) as bundle:
            bundle_id = bundle.as_argument()
            wrapper = wrap_entry([bundle_id])
    except Exception as e:
        code = e.code if isinstance(e, PipelineError) else None
        return _fail(
            f"{type(e).__name__}: {e}",
            details={"code": code} if code else {},
        )

    try:
        if tuple(wrapper.bundle_ids) != (bundle_id,):
            return _fail(
                f"Wrapper embeds {list(wrapper.bundle_ids)}, expected [{bundle_id!r}]",
                wrapper=wrapper,
            )
        if not wrapper.path.is_file():
            return _fail(f"No wrapper written at {wrapper.path}", wrapper=wrapper)
        logger.info("Validation passed: wrapper at %s", wrapper.path)
        return ValidationResult(status=ValidationStatus.PASS, wrapper=wrapper)
    finally:
        _discard_wrapper(wrapper.path)


def run_validation(pipeline: NodePipeline) -> ValidationResult:
    """Validate a pipeline through its wrap_for_bundles entry point."""
    return validate(pipeline.wrap_for_bundles, tmp_dir=pipeline.settings.tmp_dir)


__all__ = [
    "FIXTURE_NAME",
    "fixture_bundle",
    "fixture_manifest",
    "run_validation",
    "validate",
    "write_fixture_bundle",
]
