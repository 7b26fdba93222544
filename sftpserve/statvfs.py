"""File system statistics for the statvfs extension."""

from __future__ import annotations

import errno
import os
import struct
import sys
from dataclasses import astuple, dataclass

__all__ = ["StatVFS", "stat_vfs_for_path"]

# Longest path name on the BSD family, which reports no per-file-system limit.
_DARWIN_NAME_MAX = 1024

_LAYOUT = struct.Struct(">I11Q")


@dataclass(frozen=True)
class StatVFS:
    """Statistics of a mounted file system."""

    bsize: int = 0
    frsize: int = 0
    blocks: int = 0
    bfree: int = 0
    bavail: int = 0
    files: int = 0
    ffree: int = 0
    favail: int = 0
    fsid: int = 0
    flag: int = 0
    namemax: int = 0

    def marshal(self, request_id: int) -> bytes:
        """Encode as the payload of an SSH_FXP_EXTENDED_REPLY."""
        return _LAYOUT.pack(request_id, *astuple(self))


def stat_vfs_for_path(path: str) -> StatVFS:
    """Return the statistics of the file system holding path.

    Raises OSError with ENOTSUP where the platform offers no such call.
    """
    platform = sys.platform
    statvfs = getattr(os, "statvfs", None)
    supported = platform.startswith("linux") or platform == "darwin"
    if statvfs is None or not supported:
        code = errno.ENOTSUP
        raise OSError(code, os.strerror(code), path)

    st = statvfs(path)
    if platform == "darwin":
        return StatVFS(
            bsize=st.f_bsize,
            frsize=st.f_bsize,
            blocks=st.f_blocks,
            bfree=st.f_bfree,
            bavail=st.f_bavail,
            files=st.f_files,
            ffree=st.f_ffree,
            favail=st.f_ffree,
            fsid=getattr(st, "f_fsid", 0),
            flag=st.f_flag,
            namemax=_DARWIN_NAME_MAX,
        )
    return StatVFS(
        bsize=st.f_bsize,
        frsize=st.f_frsize,
        blocks=st.f_blocks,
        bfree=st.f_bfree,
        bavail=st.f_bavail,
        files=st.f_files,
        ffree=st.f_ffree,
        favail=st.f_ffree,
        flag=st.f_flag,
        namemax=st.f_namemax,
    )