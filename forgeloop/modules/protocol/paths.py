"""
Workspace path normalization

Every path that reaches the staging layer is workspace-relative, uses forward
slashes, and never climbs above the workspace root.
"""

import posixpath
import re

from forgeloop.core.exceptions import UnsafePathError


_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


def normalize_workspace_path(path: str) -> str:
    """
    Normalize a workspace-relative path.

    ``src\\App.tsx`` -> ``src/App.tsx``, ``./a//b/../c`` -> ``a/c``.

    Raises:
        UnsafePathError: empty, absolute, or escaping the workspace root
    """
    if path is None or not str(path).strip():
        raise UnsafePathError(str(path), "empty path")

    raw = str(path).strip().replace("\\", "/")

    if raw.startswith("/") or _DRIVE_LETTER.match(raw):
        raise UnsafePathError(path, "absolute paths are not allowed")
    if "\x00" in raw:
        raise UnsafePathError(path, "NUL byte in path")

    normalized = posixpath.normpath(raw)

    if normalized in (".", ""):
        raise UnsafePathError(path, "path resolves to the workspace root")
    if normalized == ".." or normalized.startswith("../"):
        raise UnsafePathError(path, "path escapes the workspace")

    return normalized
