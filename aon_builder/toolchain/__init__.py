"""Toolchain resolution module.

This module handles:
- Mapping platform names to Rust target triples
- Fetching toolchain indexes and component blobs from the remote store
- Content-addressed caching of components
- Resolving the compiler, linker, and native library closure
"""

from aon_builder.toolchain.platforms import (
    SUPPORTED_PLATFORMS,
    get_platform,
    host_platform,
)
from aon_builder.toolchain.resolver import ToolchainResolver, resolve_toolchain
from aon_builder.toolchain.store import (
    CacheStore,
    FilesystemCacheStore,
    InMemoryCacheStore,
)

__all__ = [
    "SUPPORTED_PLATFORMS",
    "CacheStore",
    "FilesystemCacheStore",
    "InMemoryCacheStore",
    "ToolchainResolver",
    "get_platform",
    "host_platform",
    "resolve_toolchain",
]
