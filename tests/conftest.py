"""Shared fixtures for aon_builder tests."""

import hashlib
import io
import json
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from aon_builder.config import Settings
from aon_builder.crates.runner import BuildResult, built_binary_path
from aon_builder.types import (
    BuildArtifact,
    ComponentKind,
    ToolchainComponent,
    ToolchainSpec,
)

NODE_MANIFEST = """\
[package]
name = "always-online-node"
version = "0.1.0"
edition = "2021"

[dependencies]
"""

LINUX_COMPONENTS = [
    ("rustc", "compiler"),
    ("cc", "linker"),
    ("openssl", "library"),
    ("libdatachannel", "library"),
    ("libstdc++", "library"),
]


def make_component_tarball(name: str) -> bytes:
    """Return a small gzipped tarball that unpacks to bin/ and lib/."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for member, content in (
            (f"bin/{name}", b"#!/bin/sh\n"),
            (f"lib/lib{name}.a", b"archive"),
        ):
            info = tarfile.TarInfo(member)
            info.size = len(content)
            info.mtime = 0
            tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def make_index(
    compiler_version: str = "1.85.0",
    components: list[tuple[str, str]] | None = None,
) -> tuple[bytes, dict[str, bytes]]:
    """Return (index bytes, digest -> blob) for a toolchain index."""
    blobs: dict[str, bytes] = {}
    entries = []
    for name, kind in components or LINUX_COMPONENTS:
        blob = make_component_tarball(name)
        digest = hashlib.sha256(blob).hexdigest()
        blobs[digest] = blob
        entries.append({"name": name, "kind": kind, "digest": digest})
    index = {"compiler": "rustc", "compiler_version": compiler_version, "components": entries}
    return json.dumps(index).encode(), blobs


def fake_run_build(command, cwd, build_dir, target_dir, timeout=None, env_override=None):
    """Stand-in for cargo.

    Emits an executable script whose bytes depend only on the target and the
    sources. It prints its arguments one per line, so wrappers around it can
    be run.
    """
    build_dir.mkdir(parents=True, exist_ok=True)
    log_path = build_dir / "build.log"
    log_path.write_text("   Compiling always-online-node v0.1.0\n")
    triple = command[command.index("--target") + 1]
    name = command[command.index("--bin") + 1]
    source_digest = hashlib.sha256((cwd / "src" / "main.rs").read_bytes()).hexdigest()
    binary = built_binary_path(target_dir, triple, name)
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text(
        f"#!/bin/sh\n# {triple} {source_digest}\n"
        'for a in "$@"; do printf "%s\\n" "$a"; done\n'
    )
    now = datetime.now(timezone.utc)
    return BuildResult(
        success=True,
        exit_code=0,
        target_dir=target_dir,
        log_path=log_path,
        started_at=now,
        finished_at=now,
        command=" ".join(command),
    )


@pytest.fixture
def fake_cargo():
    """Replace cargo with fake_run_build."""
    with patch(
        "aon_builder.crates.service.run_build", side_effect=fake_run_build
    ) as mock_run:
        yield mock_run


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory."""
    return Settings(
        cache_dir=tmp_path / "store",
        artifacts_dir=tmp_path / "artifacts",
        wrappers_dir=tmp_path / "wrappers",
        store_url="https://store.test",
    )


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A minimal node crate."""
    root = tmp_path / "node"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(NODE_MANIFEST)
    (root / "Cargo.lock").write_text("version = 3\n")
    (root / "src" / "main.rs").write_text('fn main() { println!("online"); }\n')
    return root


@pytest.fixture
def toolchain(tmp_path: Path) -> ToolchainSpec:
    """A resolved Linux toolchain with fake store paths."""
    store = tmp_path / "store"
    components = tuple(
        ToolchainComponent(
            name=name,
            kind=ComponentKind(kind),
            digest=hashlib.sha256(name.encode()).hexdigest(),
            path=store / hashlib.sha256(name.encode()).hexdigest(),
        )
        for name, kind in LINUX_COMPONENTS
    )
    return ToolchainSpec(
        compiler="rustc",
        compiler_version="1.85.0",
        platform="x86_64-unknown-linux-gnu",
        library_search_paths=tuple(
            c.path / "lib" for c in components if c.kind == ComponentKind.LIBRARY
        ),
        components=components,
    )


@pytest.fixture
def artifact(tmp_path: Path) -> BuildArtifact:
    """A built artifact whose executable echoes its arguments."""
    exe = tmp_path / "artifact" / "bin" / "always-online-node"
    exe.parent.mkdir(parents=True)
    exe.write_text('#!/bin/sh\nfor a in "$@"; do printf "%s\\n" "$a"; done\nexit 7\n')
    exe.chmod(0o755)
    return BuildArtifact(
        executable=exe,
        name="always-online-node",
        version="0.1.0",
        content_hash=hashlib.sha256(exe.read_bytes()).hexdigest(),
        platform="x86_64-unknown-linux-gnu",
    )
