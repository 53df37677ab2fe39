"""Wrapper script rendering and inspection.

A wrapper is a POSIX shell script that execs the artifact with the bundle
identifiers placed ahead of the caller's own arguments:

    #!/bin/sh
    # aon-artifact: "/.../bin/always-online-node"
    # aon-bundles: ["happ-store"]
    exec '/.../bin/always-online-node' 'happ-store' "$@"

``exec`` replaces the shell, so the artifact's exit code and standard
streams reach the caller untouched. The two comment lines record what was
embedded so a wrapper can be inspected without running it.
"""

from __future__ import annotations

import hashlib
import json
import re
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

SHEBANG = "#!/bin/sh"
ARTIFACT_MARKER = "# aon-artifact: "
BUNDLES_MARKER = "# aon-bundles: "
WRAPPER_PREFIX = "aon-for-"

_SLUG_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")
SLUG_MAX_LENGTH = 40


@dataclass(frozen=True)
class WrapperInfo:
    """What a wrapper file says about itself."""

    artifact_path: Path
    bundle_ids: tuple[str, ...]


def render_wrapper(artifact_path: Path, bundle_ids: Sequence[str]) -> str:
    """Render the wrapper script text.

    Args:
        artifact_path: Executable to exec.
        bundle_ids: Identifiers to prepend, in order.

    Returns:
        Script text.
    """
    argv = [shlex.quote(str(artifact_path))]
    argv.extend(shlex.quote(b) for b in bundle_ids)
    argv.append('"$@"')
    lines = [
        SHEBANG,
        f"{ARTIFACT_MARKER}{json.dumps(str(artifact_path))}",
        f"{BUNDLES_MARKER}{json.dumps(list(bundle_ids))}",
        f"exec {' '.join(argv)}",
    ]
    return "\n".join(lines) + "\n"


def parse_wrapper(text: str) -> WrapperInfo:
    """Parse the metadata lines of a wrapper script.

    Raises:
        ValueError: If the text is not a wrapper produced by render_wrapper().
    """
    artifact: str | None = None
    bundles: list[str] | None = None
    for line in text.splitlines():
        # Metadata precedes the exec line; quoted arguments may contain newlines
        if line.startswith("exec "):
            break
        if line.startswith(ARTIFACT_MARKER):
            artifact = json.loads(line[len(ARTIFACT_MARKER):])
            if not isinstance(artifact, str):
                raise ValueError("artifact path must be a JSON string")
        elif line.startswith(BUNDLES_MARKER):
            loaded = json.loads(line[len(BUNDLES_MARKER):])
            if not isinstance(loaded, list) or not all(
                isinstance(b, str) for b in loaded
            ):
                raise ValueError("bundle list must be a JSON list of strings")
            bundles = loaded
    if artifact is None or bundles is None:
        raise ValueError("not an aon wrapper: metadata lines missing")
    return WrapperInfo(artifact_path=Path(artifact), bundle_ids=tuple(bundles))


def read_wrapper(path: Path) -> WrapperInfo:
    """Read and parse a wrapper file."""
    return parse_wrapper(path.read_text(encoding="utf-8"))


def wrapper_argv(info: WrapperInfo, runtime_args: Sequence[str] = ()) -> list[str]:
    """Return the argv a wrapper execs for the given runtime arguments."""
    return [str(info.artifact_path), *info.bundle_ids, *runtime_args]


def bundle_set_digest(content_hash: str, bundle_ids: Sequence[str]) -> str:
    """Hash an artifact and an ordered bundle list into a wrapper identity."""
    payload = json.dumps([content_hash, list(bundle_ids)], separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def wrapper_dirname(content_hash: str, bundle_ids: Sequence[str]) -> str:
    """Return the directory name of a wrapper.

    The readable part comes from the first bundle identifier; the digest
    keeps every distinct (artifact, bundle list) pair apart.
    """
    if bundle_ids:
        stem = Path(bundle_ids[0]).name or bundle_ids[0]
        slug = _SLUG_UNSAFE.sub("-", stem).strip("-.")[:SLUG_MAX_LENGTH] or "bundle"
    else:
        slug = "none"
    digest = bundle_set_digest(content_hash, bundle_ids)[:12]
    return f"{WRAPPER_PREFIX}{slug}-{digest}"


__all__ = [
    "WrapperInfo",
    "bundle_set_digest",
    "parse_wrapper",
    "read_wrapper",
    "render_wrapper",
    "wrapper_argv",
    "wrapper_dirname",
]
