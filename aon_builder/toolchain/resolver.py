"""Toolchain resolution.

This module turns a declared compiler version and a platform into a
ToolchainSpec: the compiler, linker, and the native library closure needed
to link the node binary. Components come from an injected CacheStore and
are fetched from the remote store on a miss.

The node links a native networking library that needs a C++ standard
library; which one depends on the platform's compiler runtime, so the
required closure differs between Linux and Darwin.
"""

from __future__ import annotations

import json
import logging
import re
import tarfile

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from aon_builder.config import Settings, get_settings
from aon_builder.errors import DependencyResolutionError, UnsupportedPlatform
from aon_builder.toolchain.fetch import (
    FetchError,
    VerificationError,
    build_blob_url,
    build_index_url,
    fetch_blob,
    fetch_index,
    index_key,
)
from aon_builder.toolchain.platforms import get_platform
from aon_builder.toolchain.store import CacheStore, StoreIntegrityError
from aon_builder.types import ComponentKind, Platform, ToolchainComponent, ToolchainSpec

logger = logging.getLogger(__name__)

DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")

REQUIRED_COMPONENTS: dict[ComponentKind, tuple[str, ...]] = {
    ComponentKind.COMPILER: ("rustc",),
    ComponentKind.LINKER: ("cc",),
}

# Native library closure per OS
REQUIRED_LIBRARIES: dict[str, tuple[str, ...]] = {
    "linux": ("openssl", "libdatachannel", "libstdc++"),
    "darwin": ("openssl", "libdatachannel", "libc++"),
}


class IndexComponent(BaseModel):
    """One entry of a toolchain index."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    kind: ComponentKind
    digest: str

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        """Validate digest is a lowercase SHA-256 hex string."""
        v = v.lower()
        if not DIGEST_PATTERN.match(v):
            raise ValueError(f"digest must be a SHA-256 hex string, got '{v}'")
        return v


class ToolchainIndex(BaseModel):
    """Toolchain index published by the remote store for one platform."""

    model_config = ConfigDict(extra="ignore")

    compiler: str = "rustc"
    compiler_version: str
    components: list[IndexComponent] = Field(default_factory=list)

    def names(self, kind: ComponentKind) -> set[str]:
        return {c.name for c in self.components if c.kind == kind}


def required_closure(platform: Platform) -> dict[ComponentKind, tuple[str, ...]]:
    """Return the component names a platform's toolchain must provide."""
    closure = dict(REQUIRED_COMPONENTS)
    closure[ComponentKind.LIBRARY] = REQUIRED_LIBRARIES.get(platform.os, ())
    return closure


class ToolchainResolver:
    """Resolve toolchains through a content-addressed store.

    Args:
        store: Injected cache store.
        settings: Application settings (store URL, offline mode, timeouts).
        client: Optional HTTPX client; one is created per call if omitted.
    """

    def __init__(
        self,
        store: CacheStore,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._client = client

    def resolve(self, compiler_version: str, platform: str) -> ToolchainSpec:
        """Resolve a toolchain for a compiler version and platform.

        Args:
            compiler_version: Declared compiler version.
            platform: System name or target triple.

        Returns:
            Resolved ToolchainSpec.

        Raises:
            UnsupportedPlatform: No prebuilt toolchain exists for the platform.
            DependencyResolutionError: A required component cannot be located.
        """
        plat = get_platform(platform)
        if self._client is not None:
            return self._resolve(self._client, compiler_version, plat)
        with httpx.Client(follow_redirects=True) as client:
            return self._resolve(client, compiler_version, plat)

    def _resolve(
        self,
        client: httpx.Client,
        compiler_version: str,
        plat: Platform,
    ) -> ToolchainSpec:
        logger.info("Resolving rust %s toolchain for %s", compiler_version, plat.system)

        index = self._load_index(client, compiler_version, plat)
        self._check_closure(index, plat)

        components: list[ToolchainComponent] = []
        for entry in sorted(index.components, key=lambda c: (c.kind.value, c.name)):
            self._ensure_component(client, entry, plat)
            components.append(
                ToolchainComponent(
                    name=entry.name,
                    kind=entry.kind,
                    digest=entry.digest,
                    path=self.store.location(entry.digest),
                )
            )

        spec = ToolchainSpec(
            compiler=index.compiler,
            compiler_version=compiler_version,
            platform=plat.triple,
            library_search_paths=tuple(
                c.path / "lib" for c in components if c.kind == ComponentKind.LIBRARY
            ),
            components=tuple(components),
        )
        logger.info(
            "Resolved toolchain for %s with %d components", plat.triple, len(components)
        )
        return spec

    def _load_index(
        self,
        client: httpx.Client,
        compiler_version: str,
        plat: Platform,
    ) -> ToolchainIndex:
        key = index_key(plat.system, compiler_version)
        raw = self.store.get_index(key)

        if raw is None:
            if self.settings.offline:
                raise DependencyResolutionError(
                    f"Toolchain index {key} is not cached and offline mode is enabled",
                    platform=plat.system,
                    code="offline_mode",
                )
            url = build_index_url(self.settings.store_url, plat.system, compiler_version)
            try:
                raw = fetch_index(client, url)
            except FetchError as e:
                if e.status_code == 404:
                    raise UnsupportedPlatform(plat.system, compiler_version) from e
                raise DependencyResolutionError(
                    f"Failed to fetch toolchain index for {plat.system}: {e}",
                    platform=plat.system,
                    code=e.code,
                ) from e
            fresh = True
        else:
            logger.debug("Using cached toolchain index %s", key)
            fresh = False

        try:
            index = ToolchainIndex.model_validate(json.loads(raw))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise DependencyResolutionError(
                f"Malformed toolchain index {key}: {e}",
                platform=plat.system,
            ) from e

        if index.compiler_version != compiler_version:
            raise DependencyResolutionError(
                f"Toolchain index {key} declares rust {index.compiler_version}",
                platform=plat.system,
            )

        if fresh:
            self.store.put_index(key, raw)
        return index

    def _check_closure(self, index: ToolchainIndex, plat: Platform) -> None:
        for kind, names in required_closure(plat).items():
            missing = sorted(set(names) - index.names(kind))
            if missing:
                raise DependencyResolutionError(
                    f"Toolchain for {plat.system} is missing required "
                    f"{kind.value} component(s): {', '.join(missing)}",
                    platform=plat.system,
                    component=missing[0],
                )

    def _ensure_component(
        self,
        client: httpx.Client,
        entry: IndexComponent,
        plat: Platform,
    ) -> None:
        if self.store.contains(entry.digest):
            logger.debug("Component %s found in store", entry.name)
            return

        if self.settings.offline:
            raise DependencyResolutionError(
                f"Component {entry.name} ({entry.digest[:16]}) is not cached "
                "and offline mode is enabled",
                platform=plat.system,
                component=entry.name,
                code="offline_mode",
            )

        url = build_blob_url(self.settings.store_url, entry.digest)
        try:
            data = fetch_blob(
                client, url, entry.digest, timeout=self.settings.fetch_timeout
            )
            self.store.put(entry.digest, data)
        except (FetchError, VerificationError, StoreIntegrityError) as e:
            raise DependencyResolutionError(
                f"Failed to fetch component {entry.name} for {plat.system}: {e}",
                platform=plat.system,
                component=entry.name,
                code=e.code,
            ) from e
        except (tarfile.TarError, OSError) as e:
            raise DependencyResolutionError(
                f"Failed to store component {entry.name} for {plat.system}: {e}",
                platform=plat.system,
                component=entry.name,
            ) from e


def resolve_toolchain(
    compiler_version: str,
    platform: str,
    store: CacheStore,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> ToolchainSpec:
    """Convenience wrapper around ToolchainResolver.resolve()."""
    return ToolchainResolver(store, settings=settings, client=client).resolve(
        compiler_version, platform
    )


__all__ = [
    "REQUIRED_COMPONENTS",
    "REQUIRED_LIBRARIES",
    "IndexComponent",
    "ToolchainIndex",
    "ToolchainResolver",
    "required_closure",
    "resolve_toolchain",
]
