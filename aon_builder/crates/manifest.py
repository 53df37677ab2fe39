"""Source manifest parsing.

Reads the ``[package]`` table of a crate's ``Cargo.toml``. Only the name and
version are used: they tag the artifact and feed the cache key.
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from aon_builder.errors import InvalidManifest

MANIFEST_FILENAME = "Cargo.toml"

# Semantic version: MAJOR.MINOR.PATCH[-prerelease][+build]
SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


class SourceManifest(BaseModel):
    """Package identity read from the source tree.

    Attributes:
        name: Package name; also the name of the produced binary.
        version: Semantic version string.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)

    @field_validator("name", "version", mode="before")
    @classmethod
    def strip_value(cls, v: object) -> object:
        """Strip surrounding whitespace from string fields."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version is a semantic version."""
        if not SEMVER_PATTERN.match(v):
            raise ValueError(f"version must be a semantic version, got '{v}'")
        return v

    @property
    def tag(self) -> str:
        return f"{self.name}@{self.version}"


def parse_manifest_data(data: dict, manifest_path: Path | None = None) -> SourceManifest:
    """Validate parsed manifest data.

    Args:
        data: Parsed TOML document.
        manifest_path: Path for error messages.

    Returns:
        SourceManifest instance.

    Raises:
        InvalidManifest: If the package table or its fields are missing or empty.
    """
    where = manifest_path or MANIFEST_FILENAME
    package = data.get("package")
    if not isinstance(package, dict):
        raise InvalidManifest(f"{where}: missing [package] table", manifest_path)

    for field in ("name", "version"):
        if package.get(field) in (None, ""):
            raise InvalidManifest(
                f"{where}: package.{field} is missing or empty", manifest_path
            )

    try:
        return SourceManifest.model_validate(package)
    except ValidationError as e:
        errors = "; ".join(
            f"package.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidManifest(f"{where}: {errors}", manifest_path) from e


def load_manifest(source_tree: Path) -> SourceManifest:
    """Load the source manifest at the root of a source tree.

    Args:
        source_tree: Crate root directory.

    Returns:
        SourceManifest instance.

    Raises:
        InvalidManifest: If the file is missing, unparsable, or incomplete.
    """
    manifest_path = source_tree / MANIFEST_FILENAME
    try:
        with manifest_path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise InvalidManifest(
            f"No {MANIFEST_FILENAME} found in {source_tree}", manifest_path
        ) from e
    except tomllib.TOMLDecodeError as e:
        raise InvalidManifest(f"{manifest_path}: {e}", manifest_path) from e

    return parse_manifest_data(data, manifest_path)


__all__ = [
    "MANIFEST_FILENAME",
    "SEMVER_PATTERN",
    "SourceManifest",
    "load_manifest",
    "parse_manifest_data",
]
