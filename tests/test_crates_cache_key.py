"""Tests for crates/cache_key.py module."""

import dataclasses
import json

from aon_builder.crates.cache_key import (
    BUILD_PROFILE,
    CACHE_KEY_SCHEMA_VERSION,
    compute_cache_key,
    compute_cache_key_for_build,
    create_build_inputs,
    short_key,
)
from aon_builder.crates.source import snapshot_source


class TestCreateBuildInputs:
    """Tests for create_build_inputs function."""

    def test_inputs(self, source_tree, toolchain):
        inputs = create_build_inputs(snapshot_source(source_tree), toolchain)

        assert inputs.schema_version == CACHE_KEY_SCHEMA_VERSION
        assert inputs.package == {"name": "always-online-node", "version": "0.1.0"}
        assert inputs.build_options == {"profile": BUILD_PROFILE}
        assert inputs.toolchain == toolchain.fingerprint()

    def test_inputs_are_json_serializable(self, source_tree, toolchain):
        inputs = create_build_inputs(snapshot_source(source_tree), toolchain)
        json.dumps(inputs.to_dict())

    def test_extra_build_options(self, source_tree, toolchain):
        inputs = create_build_inputs(
            snapshot_source(source_tree), toolchain, {"features": ["metrics"]}
        )
        assert inputs.build_options == {"profile": "release", "features": ["metrics"]}


class TestComputeCacheKey:
    """Tests for compute_cache_key function."""

    def test_format(self, source_tree, toolchain):
        key, _ = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        assert key.startswith("sha256:")
        assert len(key) == len("sha256:") + 64

    def test_deterministic(self, source_tree, toolchain):
        """Identical inputs produce identical keys."""
        a, _ = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        b, _ = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        assert a == b

    def test_source_change_changes_key(self, source_tree, toolchain):
        a, _ = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        (source_tree / "src" / "main.rs").write_text("fn main() {}\n")
        b, _ = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        assert a != b

    def test_platform_changes_key(self, source_tree, toolchain):
        source = snapshot_source(source_tree)
        other = dataclasses.replace(toolchain, platform="aarch64-unknown-linux-gnu")
        a, _ = compute_cache_key_for_build(source, toolchain)
        b, _ = compute_cache_key_for_build(source, other)
        assert a != b

    def test_store_location_does_not_change_key(self, source_tree, toolchain):
        """Moving the store leaves the key alone."""
        source = snapshot_source(source_tree)
        moved = dataclasses.replace(
            toolchain,
            components=tuple(
                dataclasses.replace(c, path=c.path.with_name("elsewhere"))
                for c in toolchain.components
            ),
        )
        assert compute_cache_key_for_build(source, toolchain)[0] == (
            compute_cache_key_for_build(source, moved)[0]
        )

    def test_key_matches_inputs(self, source_tree, toolchain):
        key, inputs = compute_cache_key_for_build(snapshot_source(source_tree), toolchain)
        assert compute_cache_key(inputs) == key


class TestShortKey:
    """Tests for short_key function."""

    def test_strips_prefix(self):
        assert short_key("sha256:" + "ab" * 32) == "ab" * 8

    def test_custom_length(self):
        assert short_key("sha256:0123456789", 4) == "0123"
