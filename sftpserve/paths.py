"""Mapping of SFTP (slash separated) paths to local file system paths."""

from __future__ import annotations

import os
import posixpath

__all__ = [
    "clean_path",
    "to_local_path_posix",
    "to_local_path_windows",
    "to_local_path_plan9",
]


def _clean(path: str) -> str:
    """Lexically clean a slash separated path; the empty path becomes '.'."""
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(*parts: str) -> str:
    """Join non-empty parts with slashes and clean the result."""
    present = [part for part in parts if part]
    if not present:
        return ""
    return _clean("/".join(present))


def _is_abs_windows(path: str) -> bool:
    """Report whether a backslash separated path is absolute on Windows."""
    separators = "\\/"
    if len(path) >= 2 and path[1] == ":" and path[0].isascii() and path[0].isalpha():
        return len(path) > 2 and path[2] in separators
    return (
        len(path) > 2
        and path[0] in separators
        and path[1] in separators
        and path[2] not in separators
    )


def _is_abs_plan9(path: str) -> bool:
    return path.startswith("/") or path.startswith("#")


def clean_path(path: str) -> str:
    """Clean a path and make it absolute, rooted at '/'.

    On systems whose separator is a backslash, backslashes are treated as
    separators first.
    """
    if os.sep == "\\":
        path = path.replace("\\", "/")
    cleaned = _clean(path)
    if not cleaned.startswith("/"):
        cleaned = _join("/", cleaned)
    return cleaned


def to_local_path_posix(path: str, work_dir: str = "") -> str:
    """Resolve a request path on a POSIX system; relative paths use work_dir."""
    if work_dir and not path.startswith("/"):
        path = _join(work_dir, path)
    return path


def to_local_path_windows(path: str, work_dir: str = "") -> str:
    """Resolve a request path on Windows.

    A leading slash before a drive letter is dropped ("/C:/Windows" becomes
    "C:\\Windows", "/C:" becomes "C:\\").
    """
    work_dir = work_dir.replace("\\", "/")
    if work_dir and not path.startswith("/"):
        path = _join(work_dir, path)

    local = path.replace("/", "\\")

    if path.startswith("/"):
        stripped = local.lstrip("\\")
        if _is_abs_windows(stripped):
            return stripped
        stripped += "\\"
        if _is_abs_windows(stripped):
            return stripped

    return local


def to_local_path_plan9(path: str, work_dir: str = "") -> str:
    """Resolve a request path on Plan 9, where "/#s/boot" means "#s/boot"."""
    if work_dir and not path.startswith("/"):
        path = _join(work_dir, path)

    if path.startswith("/"):
        rest = path[1:]
        if _is_abs_plan9(rest):
            return rest

    return path