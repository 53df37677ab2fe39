"""Supported build platforms.

Platforms are addressed either by short system name (``x86_64-linux``) or by
Rust target triple (``x86_64-unknown-linux-gnu``).
"""

from __future__ import annotations

import platform as _platform
import sys

from aon_builder.errors import UnsupportedPlatform
from aon_builder.types import Platform

SUPPORTED_PLATFORMS: dict[str, Platform] = {
    "x86_64-linux": Platform(
        system="x86_64-linux",
        triple="x86_64-unknown-linux-gnu",
        arch="x86_64",
        os="linux",
    ),
    "aarch64-linux": Platform(
        system="aarch64-linux",
        triple="aarch64-unknown-linux-gnu",
        arch="aarch64",
        os="linux",
    ),
    "x86_64-darwin": Platform(
        system="x86_64-darwin",
        triple="x86_64-apple-darwin",
        arch="x86_64",
        os="darwin",
    ),
    "aarch64-darwin": Platform(
        system="aarch64-darwin",
        triple="aarch64-apple-darwin",
        arch="aarch64",
        os="darwin",
    ),
}

_BY_TRIPLE = {p.triple: p for p in SUPPORTED_PLATFORMS.values()}

_ARCH_ALIASES = {"amd64": "x86_64", "arm64": "aarch64"}


def get_platform(name: str) -> Platform:
    """Look up a platform by system name or target triple.

    Args:
        name: System name or Rust target triple.

    Returns:
        The matching Platform.

    Raises:
        UnsupportedPlatform: If the name is not a known platform.
    """
    key = name.strip()
    if key in SUPPORTED_PLATFORMS:
        return SUPPORTED_PLATFORMS[key]
    if key in _BY_TRIPLE:
        return _BY_TRIPLE[key]
    raise UnsupportedPlatform(name)


def host_platform() -> Platform:
    """Return the platform of the running interpreter.

    Raises:
        UnsupportedPlatform: If the host is not a supported build platform.
    """
    machine = _platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine, machine)
    os_name = "darwin" if sys.platform == "darwin" else sys.platform
    return get_platform(f"{arch}-{os_name}")


__all__ = ["SUPPORTED_PLATFORMS", "get_platform", "host_platform"]
