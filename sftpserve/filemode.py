"""Conversion between SFTP mode bits, file modes and status codes."""

from __future__ import annotations

import enum
import errno
import os
import stat

from .protocol import StatusCode

__all__ = [
    "FileMode",
    "S_IFMT",
    "translate_errno",
    "translate_syscall_error",
    "wrap_path_error",
    "is_regular",
    "to_file_mode",
    "from_file_mode",
]

# The POSIX file type mask; fixed here so every platform agrees.
S_IFMT = 0xF000


class FileMode(enum.IntFlag):
    """Portable file mode: permission bits plus high type and special bits."""

    DIR = 1 << 31
    APPEND = 1 << 30
    EXCLUSIVE = 1 << 29
    TEMPORARY = 1 << 28
    SYMLINK = 1 << 27
    DEVICE = 1 << 26
    NAMED_PIPE = 1 << 25
    SOCKET = 1 << 24
    SETUID = 1 << 23
    SETGID = 1 << 22
    CHAR_DEVICE = 1 << 21
    STICKY = 1 << 20
    IRREGULAR = 1 << 19

    TYPE = DIR | SYMLINK | NAMED_PIPE | SOCKET | DEVICE | CHAR_DEVICE | IRREGULAR
    PERM = 0o777


_TYPE_FROM_POSIX = {
    stat.S_IFBLK: FileMode.DEVICE,
    stat.S_IFCHR: FileMode.DEVICE | FileMode.CHAR_DEVICE,
    stat.S_IFDIR: FileMode.DIR,
    stat.S_IFIFO: FileMode.NAMED_PIPE,
    stat.S_IFLNK: FileMode.SYMLINK,
    stat.S_IFREG: FileMode(0),
    stat.S_IFSOCK: FileMode.SOCKET,
}

_TYPE_TO_POSIX = {
    int(FileMode.DEVICE | FileMode.CHAR_DEVICE): stat.S_IFCHR,
    int(FileMode.DEVICE): stat.S_IFBLK,
    int(FileMode.DIR): stat.S_IFDIR,
    int(FileMode.NAMED_PIPE): stat.S_IFIFO,
    int(FileMode.SYMLINK): stat.S_IFLNK,
    0: stat.S_IFREG,
    int(FileMode.SOCKET): stat.S_IFSOCK,
}

_SPECIAL_BITS = (
    (stat.S_ISUID, FileMode.SETUID),
    (stat.S_ISGID, FileMode.SETGID),
    (stat.S_ISVTX, FileMode.STICKY),
)


def translate_errno(code: int) -> StatusCode:
    """Map an errno value to an SFTP status code."""
    if code == 0:
        return StatusCode.OK
    if code == errno.ENOENT:
        return StatusCode.NO_SUCH_FILE
    if code in (errno.EACCES, errno.EPERM):
        return StatusCode.PERMISSION_DENIED
    return StatusCode.FAILURE


def translate_syscall_error(err: BaseException) -> StatusCode | None:
    """Return the status code for an OS error, or None if it carries no errno."""
    if isinstance(err, OSError) and isinstance(err.errno, int):
        return translate_errno(err.errno)
    return None


def wrap_path_error(path: str, err: BaseException) -> BaseException:
    """Attach a path to a bare OS error; other errors pass through unchanged."""
    if (
        isinstance(err, OSError)
        and isinstance(err.errno, int)
        and err.filename is None
    ):
        message = err.strerror or os.strerror(err.errno)
        return OSError(err.errno, message, path)
    return err


def is_regular(mode: int) -> bool:
    """Report whether SFTP mode bits describe a regular file."""
    return mode & S_IFMT == stat.S_IFREG


def to_file_mode(mode: int) -> FileMode:
    """Convert SFTP (POSIX) mode bits to a FileMode."""
    result = FileMode(mode & 0o777)
    result |= _TYPE_FROM_POSIX.get(mode & S_IFMT, FileMode(0))
    for posix_bit, flag in _SPECIAL_BITS:
        if mode & posix_bit:
            result |= flag
    return result


def from_file_mode(mode: int) -> int:
    """Convert a FileMode to SFTP (POSIX) mode bits."""
    result = int(mode) & int(FileMode.PERM)
    result |= _TYPE_TO_POSIX.get(int(mode) & int(FileMode.TYPE), 0)
    for posix_bit, flag in _SPECIAL_BITS:
        if int(mode) & int(flag):
            result |= posix_bit
    return result