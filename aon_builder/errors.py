"""Error taxonomy for the build/wrap pipeline.

Every error carries a stable ``code`` for programmatic handling and a
``context`` mapping with whatever identifies the failing step (manifest tag,
platform, bundle identifier, path). Errors are never retried here; the
caller decides.
"""

from __future__ import annotations

from typing import Any

UNSUPPORTED_PLATFORM = "unsupported_platform"
DEPENDENCY_RESOLUTION = "dependency_resolution"
INVALID_MANIFEST = "invalid_manifest"
BUILD_FAILED = "build_failed"
ARTIFACT_NOT_FOUND = "artifact_not_found"
WRAP_FAILED = "wrap_failed"


class PipelineError(Exception):
    """Base error for pipeline operations."""

    default_code = "pipeline_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"code": self.code, "message": str(self)}
        if self.context:
            result["details"] = {k: str(v) for k, v in self.context.items()}
        return result


class UnsupportedPlatform(PipelineError):
    """Raised when no prebuilt toolchain exists for a platform."""

    default_code = UNSUPPORTED_PLATFORM

    def __init__(self, platform: str, compiler_version: str | None = None) -> None:
        detail = f" with rust {compiler_version}" if compiler_version else ""
        super().__init__(
            f"No prebuilt toolchain for platform {platform}{detail}",
            platform=platform,
            compiler_version=compiler_version,
        )
        self.platform = platform


class DependencyResolutionError(PipelineError):
    """Raised when a toolchain component or native library cannot be located."""

    default_code = DEPENDENCY_RESOLUTION

    def __init__(
        self,
        message: str,
        platform: str | None = None,
        component: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code, platform=platform, component=component)
        self.platform = platform
        self.component = component


class InvalidManifest(PipelineError):
    """Raised when the source manifest is missing or incomplete."""

    default_code = INVALID_MANIFEST

    def __init__(self, message: str, manifest_path: object = None) -> None:
        super().__init__(message, manifest_path=manifest_path)
        self.manifest_path = manifest_path


class BuildFailure(PipelineError):
    """Raised when compiling the node binary fails.

    Attributes:
        diagnostic: Tail of the toolchain output.
        exit_code: Compiler process exit code, when it ran.
        log_path: Full build log.
    """

    default_code = BUILD_FAILED

    def __init__(
        self,
        message: str,
        tag: str | None = None,
        platform: str | None = None,
        diagnostic: str = "",
        exit_code: int | None = None,
        log_path: object = None,
        code: str | None = None,
    ) -> None:
        full = f"{message}\n{diagnostic}" if diagnostic else message
        super().__init__(
            full,
            code=code,
            tag=tag,
            platform=platform,
            exit_code=exit_code,
            log_path=log_path,
        )
        self.diagnostic = diagnostic
        self.exit_code = exit_code
        self.log_path = log_path


class ArtifactNotFound(PipelineError):
    """Raised when the artifact executable is missing at wrap time."""

    default_code = ARTIFACT_NOT_FOUND

    def __init__(self, path: object = None, tag: str | None = None) -> None:
        if path is None:
            message = "No artifact has been built or loaded"
        else:
            message = f"Artifact executable not found: {path}"
        if tag:
            message = f"{message} ({tag})"
        super().__init__(message, path=path, tag=tag)
        self.path = path


class WrapFailure(PipelineError):
    """Raised when a wrapper cannot be written."""

    default_code = WRAP_FAILED

    def __init__(
        self,
        message: str,
        bundle_ids: tuple[str, ...] = (),
        path: object = None,
    ) -> None:
        super().__init__(
            message,
            bundle_ids=", ".join(bundle_ids) if bundle_ids else None,
            path=path,
        )
        self.bundle_ids = bundle_ids
        self.path = path


__all__ = [
    "ARTIFACT_NOT_FOUND",
    "BUILD_FAILED",
    "DEPENDENCY_RESOLUTION",
    "INVALID_MANIFEST",
    "UNSUPPORTED_PLATFORM",
    "WRAP_FAILED",
    "ArtifactNotFound",
    "BuildFailure",
    "DependencyResolutionError",
    "InvalidManifest",
    "PipelineError",
    "UnsupportedPlatform",
    "WrapFailure",
]
