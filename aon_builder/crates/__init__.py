"""Crate build module.

This module handles:
- Source manifest parsing and source tree hashing
- Cache key computation
- Running cargo with a resolved toolchain
- Artifact installation and manifest generation
"""

from aon_builder.crates.manifest import SourceManifest, load_manifest
from aon_builder.crates.service import CrateBuilder, build_or_reuse

__all__ = ["CrateBuilder", "SourceManifest", "build_or_reuse", "load_manifest"]
