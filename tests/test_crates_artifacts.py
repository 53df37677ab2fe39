"""Tests for crates/artifacts.py module."""

import hashlib
import json
import stat
from pathlib import Path

from aon_builder.crates.artifacts import (
    ARTIFACT_MANIFEST,
    compute_file_hash,
    generate_manifest,
    install_binary,
    load_artifact,
    write_manifest,
)
from aon_builder.types import BuildArtifact


def _artifact_dir(tmp_path, content=b"\x7fELF node"):
    artifact_dir = tmp_path / "abc-always-online-node-0.1.0"
    exe = artifact_dir / "bin" / "always-online-node"
    tmp_path.mkdir(parents=True, exist_ok=True)
    src = tmp_path / "built"
    src.write_bytes(content)
    digest = install_binary(src, exe)
    artifact = BuildArtifact(
        executable=exe,
        name="always-online-node",
        version="0.1.0",
        content_hash=digest,
        cache_key="sha256:" + "0" * 64,
        platform="x86_64-unknown-linux-gnu",
    )
    write_manifest(
        generate_manifest(artifact, artifact_dir), artifact_dir / ARTIFACT_MANIFEST
    )
    return artifact_dir, artifact


class TestComputeFileHash:
    def test_hash(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"x" * 200_000)
        assert compute_file_hash(path) == hashlib.sha256(b"x" * 200_000).hexdigest()


class TestInstallBinary:
    """Tests for install_binary function."""

    def test_normalizes_metadata(self, tmp_path):
        src = tmp_path / "src"
        src.write_bytes(b"binary")
        dest = tmp_path / "out" / "bin" / "node"

        digest = install_binary(src, dest)

        assert dest.read_bytes() == b"binary"
        assert digest == hashlib.sha256(b"binary").hexdigest()
        assert stat.S_IMODE(dest.stat().st_mode) == 0o755
        assert dest.stat().st_mtime == 0


class TestManifest:
    """Tests for manifest generation and loading."""

    def test_manifest_is_relative_and_timeless(self, tmp_path):
        artifact_dir, artifact = _artifact_dir(tmp_path)
        data = json.loads((artifact_dir / ARTIFACT_MANIFEST).read_text())

        assert data["executable"] == "bin/always-online-node"
        assert data["package_version"] == "0.1.0"
        assert data["content_hash"] == artifact.content_hash
        assert not any("time" in key or "_at" in key for key in data)

    def test_identical_artifacts_identical_manifests(self, tmp_path):
        """Manifests carry no timestamps, so identical builds match byte for byte."""
        a_dir, _ = _artifact_dir(tmp_path / "a")
        b_dir, _ = _artifact_dir(tmp_path / "b")
        assert (a_dir / ARTIFACT_MANIFEST).read_bytes() == (
            b_dir / ARTIFACT_MANIFEST
        ).read_bytes()

    def test_build_inputs_recorded(self, tmp_path):
        _, artifact = _artifact_dir(tmp_path)
        manifest = generate_manifest(
            artifact, artifact.executable.parent.parent, {"source_hash": "x"}
        )
        assert manifest["build_inputs"] == {"source_hash": "x"}


class TestLoadArtifact:
    """Tests for load_artifact function."""

    def test_round_trip(self, tmp_path):
        artifact_dir, artifact = _artifact_dir(tmp_path)
        assert load_artifact(artifact_dir) == artifact

    def test_relative_dir_gives_absolute_executable(self, tmp_path, monkeypatch):
        artifact_dir, artifact = _artifact_dir(tmp_path)
        monkeypatch.chdir(tmp_path)

        loaded = load_artifact(Path(artifact_dir.name))

        assert loaded.executable.is_absolute()
        assert loaded.executable == artifact.executable

    def test_missing_manifest(self, tmp_path):
        assert load_artifact(tmp_path) is None

    def test_corrupt_manifest(self, tmp_path):
        (tmp_path / ARTIFACT_MANIFEST).write_text("{not json")
        assert load_artifact(tmp_path) is None

    def test_missing_executable(self, tmp_path):
        artifact_dir, artifact = _artifact_dir(tmp_path)
        artifact.executable.unlink()
        assert load_artifact(artifact_dir) is None

    def test_tampered_executable(self, tmp_path):
        """An executable that no longer matches its hash is not reused."""
        artifact_dir, artifact = _artifact_dir(tmp_path)
        artifact.executable.write_bytes(b"tampered")
        assert load_artifact(artifact_dir) is None
        assert load_artifact(artifact_dir, verify=False) is not None
