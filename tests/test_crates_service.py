"""Tests for crates/service.py module.

Cargo is replaced by a fake runner that writes a binary derived from the
source tree, so builds are fast and deterministic.
"""

import dataclasses
import hashlib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import fake_run_build

from aon_builder.crates.runner import BuildExecutionError, BuildResult
from aon_builder.crates.service import (
    CrateBuilder,
    build_lock,
    build_or_reuse,
    compose_build_step,
    execute_build_step,
)
from aon_builder.crates.source import snapshot_source
from aon_builder.errors import BuildFailure, InvalidManifest


class TestComposeBuildStep:
    """Tests for compose_build_step function."""

    def test_step(self, source_tree, toolchain, settings):
        step = compose_build_step(snapshot_source(source_tree), toolchain, settings)

        assert step.tag == "always-online-node@0.1.0"
        assert step.cache_key.startswith("sha256:")
        assert step.artifact_dir.parent == settings.artifacts_dir
        assert step.artifact_dir.name.endswith("-always-online-node-0.1.0")
        assert "x86_64-unknown-linux-gnu" in step.command
        assert step.environment["CARGO_TARGET_DIR"] == str(step.target_dir)
        assert step.timeout == settings.build_timeout

    def test_target_dir_outside_source(self, source_tree, toolchain, settings):
        """The source tree is never written to."""
        step = compose_build_step(snapshot_source(source_tree), toolchain, settings)
        assert not step.target_dir.is_relative_to(source_tree)

    def test_tmp_dir_setting(self, source_tree, toolchain, settings, tmp_path):
        scratch = settings.model_copy(update={"tmp_dir": tmp_path / "scratch"})
        step = compose_build_step(snapshot_source(source_tree), toolchain, scratch)
        assert step.build_dir.parent == tmp_path / "scratch"

    def test_relative_artifacts_dir(self, source_tree, toolchain, settings, monkeypatch):
        """Paths handed to cargo and to wrappers do not depend on the cwd."""
        monkeypatch.chdir(settings.artifacts_dir.parent)
        relative = settings.model_copy(
            update={"artifacts_dir": Path(settings.artifacts_dir.name)}
        )
        step = compose_build_step(snapshot_source(source_tree), toolchain, relative)

        assert step.artifact_dir.is_absolute()
        assert step.artifact_dir.parent == settings.artifacts_dir
        assert step.build_dir.is_absolute()

    def test_pure(self, source_tree, toolchain, settings):
        """Composing twice yields equal steps and touches nothing on disk."""
        source = snapshot_source(source_tree)
        assert compose_build_step(source, toolchain, settings) == compose_build_step(
            source, toolchain, settings
        )
        assert not settings.artifacts_dir.exists()


class TestExecuteBuildStep:
    """Tests for execute_build_step and build_or_reuse."""

    def test_builds_artifact(self, fake_cargo, source_tree, toolchain, settings):
        artifact, cache_hit = build_or_reuse(source_tree, toolchain, settings)

        assert cache_hit is False
        assert artifact.tag == "always-online-node@0.1.0"
        assert artifact.platform == "x86_64-unknown-linux-gnu"
        assert artifact.executable.is_file()
        assert artifact.executable.is_relative_to(settings.artifacts_dir)
        assert (
            hashlib.sha256(artifact.executable.read_bytes()).hexdigest()
            == artifact.content_hash
        )

    def test_second_build_is_cache_hit(self, fake_cargo, source_tree, toolchain, settings):
        first, _ = build_or_reuse(source_tree, toolchain, settings)
        second, cache_hit = build_or_reuse(source_tree, toolchain, settings)

        assert cache_hit is True
        assert second == first
        assert fake_cargo.call_count == 1

    def test_force_rebuild(self, fake_cargo, source_tree, toolchain, settings):
        first, _ = build_or_reuse(source_tree, toolchain, settings)
        second, cache_hit = build_or_reuse(
            source_tree, toolchain, settings, force_rebuild=True
        )

        assert cache_hit is False
        assert second.content_hash == first.content_hash
        assert fake_cargo.call_count == 2

    def test_deterministic_across_machines(
        self, fake_cargo, source_tree, toolchain, settings, tmp_path
    ):
        """Same source and toolchain give byte-identical executables."""
        other = settings.model_copy(update={"artifacts_dir": tmp_path / "other"})
        a, _ = build_or_reuse(source_tree, toolchain, settings)
        b, _ = build_or_reuse(source_tree, toolchain, other)

        assert a.content_hash == b.content_hash
        assert a.cache_key == b.cache_key
        assert a.executable.read_bytes() == b.executable.read_bytes()

    def test_source_change_builds_new_artifact(
        self, fake_cargo, source_tree, toolchain, settings
    ):
        a, _ = build_or_reuse(source_tree, toolchain, settings)
        (source_tree / "src" / "main.rs").write_text("fn main() {}\n")
        b, cache_hit = build_or_reuse(source_tree, toolchain, settings)

        assert cache_hit is False
        assert b.cache_key != a.cache_key
        assert a.executable.is_file()

    def test_platforms_build_independently(
        self, fake_cargo, source_tree, toolchain, settings
    ):
        """Builds for different platforms run concurrently without interfering."""
        arm = dataclasses.replace(toolchain, platform="aarch64-unknown-linux-gnu")
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(
                pool.map(
                    lambda tc: build_or_reuse(source_tree, tc, settings)[0],
                    [toolchain, arm],
                )
            )

        assert {a.platform for a in results} == {
            "x86_64-unknown-linux-gnu",
            "aarch64-unknown-linux-gnu",
        }
        assert results[0].executable.parent != results[1].executable.parent
        assert all(a.executable.is_file() for a in results)

    def test_compile_error(self, source_tree, toolchain, settings):
        """A failing compile raises BuildFailure with the diagnostic."""

        def failing(command, cwd, build_dir, target_dir, timeout=None, env_override=None):
            build_dir.mkdir(parents=True, exist_ok=True)
            log_path = build_dir / "build.log"
            log_path.write_text("error[E0425]: cannot find value `peer`\n")
            now = datetime.now(timezone.utc)
            return BuildResult(
                success=False,
                exit_code=101,
                target_dir=target_dir,
                log_path=log_path,
                started_at=now,
                finished_at=now,
                command="cargo build",
                error_message="Build failed with exit code 101",
            )

        with (
            patch("aon_builder.crates.service.run_build", side_effect=failing),
            pytest.raises(BuildFailure) as exc_info,
        ):
            build_or_reuse(source_tree, toolchain, settings)

        err = exc_info.value
        assert err.exit_code == 101
        assert "E0425" in err.diagnostic
        assert "always-online-node@0.1.0" in str(err)
        assert err.context["platform"] == "x86_64-unknown-linux-gnu"
        assert not list(settings.artifacts_dir.glob("*-always-online-node-*"))

    def test_build_timeout(self, source_tree, toolchain, settings):
        with (
            patch(
                "aon_builder.crates.service.run_build",
                side_effect=BuildExecutionError(
                    "Build timed out after 60 seconds", exit_code=-1, code="build_timeout"
                ),
            ),
            pytest.raises(BuildFailure) as exc_info,
        ):
            build_or_reuse(source_tree, toolchain, settings)

        assert exc_info.value.code == "build_timeout"

    def test_missing_binary(self, source_tree, toolchain, settings):
        def no_output(command, cwd, build_dir, target_dir, timeout=None, env_override=None):
            result = fake_run_build(command, cwd, build_dir, target_dir)
            for path in target_dir.rglob("*"):
                if path.is_file():
                    path.unlink()
            return result

        with (
            patch("aon_builder.crates.service.run_build", side_effect=no_output),
            pytest.raises(BuildFailure, match="produced no binary"),
        ):
            build_or_reuse(source_tree, toolchain, settings)

    def test_missing_version_fails_before_compiling(
        self, fake_cargo, source_tree, toolchain, settings
    ):
        """A manifest without a version is rejected before cargo runs."""
        (source_tree / "Cargo.toml").write_text('[package]\nname = "always-online-node"\n')

        with pytest.raises(InvalidManifest):
            build_or_reuse(source_tree, toolchain, settings)

        assert fake_cargo.call_count == 0

    def test_replaces_corrupt_artifact(self, fake_cargo, source_tree, toolchain, settings):
        """A leftover directory that fails verification is rebuilt."""
        first, _ = build_or_reuse(source_tree, toolchain, settings)
        first.executable.write_bytes(b"corrupt")

        second, cache_hit = build_or_reuse(source_tree, toolchain, settings)

        assert cache_hit is False
        assert second.executable.read_bytes() != b"corrupt"

    def test_execute_step_directly(self, fake_cargo, source_tree, toolchain, settings):
        step = compose_build_step(snapshot_source(source_tree), toolchain, settings)
        artifact, _ = execute_build_step(step)
        assert artifact.executable == step.artifact_dir / "bin" / "always-online-node"
        assert artifact.cache_key == step.cache_key

    def test_compiler_output_removed(self, fake_cargo, source_tree, toolchain, settings):
        """Only the build log outlives a successful build."""
        step = compose_build_step(snapshot_source(source_tree), toolchain, settings)
        execute_build_step(step)

        assert not step.target_dir.exists()
        assert (step.build_dir / "build.log").is_file()


class TestBuildLock:
    """Tests for build_lock context manager."""

    def test_lock_excludes_second_holder(self, tmp_path):
        with build_lock(tmp_path, "sha256:abc"):
            with pytest.raises(TimeoutError):
                with build_lock(tmp_path, "sha256:abc", timeout=0.2):
                    pass

    def test_different_keys_do_not_block(self, tmp_path):
        with build_lock(tmp_path, "sha256:abc"):
            with build_lock(tmp_path, "sha256:def", timeout=0.2):
                pass

    def test_lock_released(self, tmp_path):
        with build_lock(tmp_path, "sha256:abc"):
            pass
        with build_lock(tmp_path, "sha256:abc", timeout=0.2):
            pass


class TestCrateBuilder:
    def test_build(self, fake_cargo, source_tree, toolchain, settings):
        artifact = CrateBuilder(settings).build(source_tree, toolchain)
        assert artifact.executable.is_file()
