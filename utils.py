"""Utility functions."""
import re
from pathlib import Path

from errors import InvalidPath

ICON_PATH_RE = re.compile(r"shard-(?:0|[1-9]\d*)/[^/\\\x00\n]+(?i:\.svg)", re.ASCII)


def resolve_under_root(root: Path, candidate: Path) -> Path:
    """Resolve a path ensuring it's under the root directory."""
    real_root = root.resolve()
    real = candidate.resolve()
    if real_root not in real.parents and real != real_root:
        raise InvalidPath("Path is outside root", status_code=403)
    return real


def sanitize_icon_path(raw_path: str, storage_root: Path) -> Path:
    """Validate a public ``shard-<n>/<name>.svg`` path and resolve it under storage_root.

    The shape check runs first and touches nothing on disk; only paths that
    pass it are canonicalised and tested for confinement.
    """
    if not ICON_PATH_RE.fullmatch(raw_path):
        raise InvalidPath("Invalid path")
    return resolve_under_root(storage_root, storage_root / raw_path)
