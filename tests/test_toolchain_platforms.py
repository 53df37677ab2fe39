"""Tests for toolchain/platforms.py module."""

from unittest.mock import patch

import pytest

from aon_builder.errors import UnsupportedPlatform
from aon_builder.toolchain.platforms import (
    SUPPORTED_PLATFORMS,
    get_platform,
    host_platform,
)


class TestGetPlatform:
    """Tests for get_platform function."""

    def test_by_system_name(self):
        """Should resolve short system names."""
        plat = get_platform("aarch64-darwin")
        assert plat.triple == "aarch64-apple-darwin"
        assert plat.os == "darwin"

    def test_by_triple(self):
        """Should resolve Rust target triples."""
        plat = get_platform("x86_64-unknown-linux-gnu")
        assert plat.system == "x86_64-linux"

    def test_strips_whitespace(self):
        assert get_platform(" x86_64-linux ").system == "x86_64-linux"

    def test_unknown_platform(self):
        """Unknown platforms raise UnsupportedPlatform."""
        with pytest.raises(UnsupportedPlatform) as exc_info:
            get_platform("riscv64-linux")
        assert exc_info.value.platform == "riscv64-linux"

    def test_four_platforms(self):
        assert set(SUPPORTED_PLATFORMS) == {
            "x86_64-linux",
            "aarch64-linux",
            "x86_64-darwin",
            "aarch64-darwin",
        }


class TestHostPlatform:
    """Tests for host_platform function."""

    def test_linux_amd64(self):
        with (
            patch("aon_builder.toolchain.platforms._platform.machine", return_value="AMD64"),
            patch("aon_builder.toolchain.platforms.sys.platform", "linux"),
        ):
            assert host_platform().system == "x86_64-linux"

    def test_darwin_arm64(self):
        with (
            patch("aon_builder.toolchain.platforms._platform.machine", return_value="arm64"),
            patch("aon_builder.toolchain.platforms.sys.platform", "darwin"),
        ):
            assert host_platform().triple == "aarch64-apple-darwin"

    def test_unsupported_host(self):
        with (
            patch("aon_builder.toolchain.platforms._platform.machine", return_value="x86_64"),
            patch("aon_builder.toolchain.platforms.sys.platform", "win32"),
            pytest.raises(UnsupportedPlatform),
        ):
            host_platform()
