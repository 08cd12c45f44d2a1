"""
Path confinement for file operations.

Every tool path is resolved against the project root with symlinks followed;
anything that lands outside the root is rejected before any I/O happens.
"""

import os
from typing import Optional

from codr.errors import PathEscape

DEFAULT_IGNORE_DIRS = {".git", "node_modules", ".codr", "__pycache__", ".venv", ".mypy_cache", ".pytest_cache"}


def _is_path_within_root(path: str, root: str) -> bool:
    try:
        resolved = os.path.realpath(path)
        root_resolved = os.path.realpath(root)
        return resolved == root_resolved or resolved.startswith(root_resolved.rstrip(os.sep) + os.sep)
    except (OSError, ValueError):
        return False


def to_display_path(path: Optional[str], root: Optional[str]) -> str:
    """Render path for model-facing tool output without leaking absolute roots."""
    if path is None:
        return ""
    raw = str(path).strip()
    if not raw:
        return ""

    if root:
        root_real = os.path.realpath(root)
        path_real = os.path.realpath(os.path.join(root_real, raw))
        if _is_path_within_root(path_real, root_real):
            rel = os.path.relpath(path_real, root_real)
            if rel == ".":
                return "."
            return rel.replace(os.sep, "/")

    if not os.path.isabs(raw):
        return raw.replace("\\", "/")

    base = os.path.basename(raw.rstrip("/\\"))
    return base or raw.replace("\\", "/")


def resolve_path(path: Optional[str], root: str) -> str:
    """Return the canonical absolute path for `path` under `root`.

    Relative paths are joined to the root; absolute paths are accepted only if
    they already point inside it. Raises PathEscape otherwise.
    """
    if path is None or not str(path).strip():
        raise PathEscape("path is required", path=path)
    raw = str(path).strip()
    if "\x00" in raw:
        raise PathEscape("path contains a NUL byte", path=raw)

    root_real = os.path.realpath(root)
    candidate = raw if os.path.isabs(raw) else os.path.join(root_real, raw)
    real_path = os.path.realpath(candidate)
    if not _is_path_within_root(real_path, root_real):
        raise PathEscape(f"path '{raw}' resolves outside the project root", path=raw)
    return real_path
