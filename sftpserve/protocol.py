"""SFTP protocol constants, status errors and extension negotiation."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass

__all__ = [
    "PacketType",
    "StatusCode",
    "OpenFlag",
    "ExtensionPair",
    "StatusError",
    "UnexpectedPacketError",
    "UnexpectedIdError",
    "UnexpectedVersionError",
    "SUPPORTED_EXTENSIONS",
    "unimplemented_packet_error",
    "unimplemented_seek_whence",
    "unexpected_count",
    "get_supported_extension_by_name",
    "set_sftp_extensions",
    "current_extensions",
]


class PacketType(enum.IntEnum):
    """SSH_FXP_* packet type codes."""

    INIT = 1
    VERSION = 2
    OPEN = 3
    CLOSE = 4
    READ = 5
    WRITE = 6
    LSTAT = 7
    FSTAT = 8
    SETSTAT = 9
    FSETSTAT = 10
    OPENDIR = 11
    READDIR = 12
    REMOVE = 13
    MKDIR = 14
    RMDIR = 15
    REALPATH = 16
    STAT = 17
    RENAME = 18
    READLINK = 19
    SYMLINK = 20
    STATUS = 101
    HANDLE = 102
    DATA = 103
    NAME = 104
    ATTRS = 105
    EXTENDED = 200
    EXTENDED_REPLY = 201

    def __str__(self) -> str:
        return f"SSH_FXP_{self.name}"


class StatusCode(enum.IntEnum):
    """SSH_FX_* status codes (version 3 plus the later draft extensions)."""

    OK = 0
    EOF = 1
    NO_SUCH_FILE = 2
    PERMISSION_DENIED = 3
    FAILURE = 4
    BAD_MESSAGE = 5
    NO_CONNECTION = 6
    CONNECTION_LOST = 7
    OP_UNSUPPORTED = 8
    INVALID_HANDLE = 9
    NO_SUCH_PATH = 10
    FILE_ALREADY_EXISTS = 11
    WRITE_PROTECT = 12
    NO_MEDIA = 13
    NO_SPACE_ON_FILESYSTEM = 14
    QUOTA_EXCEEDED = 15
    UNKNOWN_PRINCIPAL = 16
    LOCK_CONFLICT = 17
    DIR_NOT_EMPTY = 18
    NOT_A_DIRECTORY = 19
    INVALID_FILENAME = 20
    LINK_LOOP = 21
    CANNOT_DELETE = 22
    INVALID_PARAMETER = 23
    FILE_IS_A_DIRECTORY = 24
    BYTE_RANGE_LOCK_CONFLICT = 25
    BYTE_RANGE_LOCK_REFUSED = 26
    DELETE_PENDING = 27
    FILE_CORRUPT = 28
    OWNER_INVALID = 29
    GROUP_INVALID = 30
    NO_MATCHING_BYTE_RANGE_LOCK = 31

    def __str__(self) -> str:
        if self.value <= StatusCode.OP_UNSUPPORTED:
            return f"SSH_FX_{self.name}"
        return "unknown"


class OpenFlag(enum.IntFlag):
    """SSH_FXF_* flags of an open request."""

    READ = 0x01
    WRITE = 0x02
    APPEND = 0x04
    CREAT = 0x08
    TRUNC = 0x10
    EXCL = 0x20


def _packet_name(code: int) -> str:
    try:
        return str(PacketType(code))
    except ValueError:
        return "unknown"


def _status_name(code: int) -> str:
    try:
        return str(StatusCode(code))
    except ValueError:
        return "unknown"


@dataclass(frozen=True)
class ExtensionPair:
    """A named protocol extension and its version data."""

    name: str
    data: str


class StatusError(Exception):
    """An SFTP operation failed with a status code."""

    def __init__(self, code: int, msg: str = "", lang: str = "") -> None:
        super().__init__(code, msg, lang)
        self.code = int(code)
        self.msg = msg
        self.lang = lang

    def __str__(self) -> str:
        quoted = json.dumps(self.msg, ensure_ascii=False)
        return f"sftp: {quoted} ({_status_name(self.code)})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StatusError):
            return NotImplemented
        return (self.code, self.msg, self.lang) == (other.code, other.msg, other.lang)

    def __hash__(self) -> int:
        return hash((self.code, self.msg, self.lang))

    def fx_code(self) -> StatusCode | int:
        """Return the code as a StatusCode where it is a known one."""
        try:
            return StatusCode(self.code)
        except ValueError:
            return self.code


class UnexpectedPacketError(Exception):
    """A packet of another type than the one expected arrived."""

    def __init__(self, want: int, got: int) -> None:
        super().__init__(want, got)
        self.want = want
        self.got = got

    def __str__(self) -> str:
        return (
            f"sftp: unexpected packet: want {_packet_name(self.want)}, "
            f"got {_packet_name(self.got)}"
        )


class UnexpectedIdError(Exception):
    """A response carried another request id than the one expected."""

    def __init__(self, want: int, got: int) -> None:
        super().__init__(want, got)
        self.want = want
        self.got = got

    def __str__(self) -> str:
        return f"sftp: unexpected id: want {self.want}, got {self.got}"


class UnexpectedVersionError(Exception):
    """The peer speaks another protocol version."""

    def __init__(self, want: int, got: int) -> None:
        super().__init__(want, got)
        self.want = want
        self.got = got

    def __str__(self) -> str:
        return f"sftp: unexpected server version: want {self.want}, got {self.got}"


def unimplemented_packet_error(code: int) -> NotImplementedError:
    """Build the error for a packet type that is not handled."""
    return NotImplementedError(
        f"sftp: unimplemented packet type: got {_packet_name(code)}"
    )


def unimplemented_seek_whence(whence: int) -> ValueError:
    """Build the error for an unsupported seek origin."""
    return ValueError(f"sftp: unimplemented seek whence {whence}")


def unexpected_count(want: int, got: int) -> ValueError:
    """Build the error for a reply with the wrong number of entries."""
    return ValueError(f"sftp: unexpected count: want {want}, got {got}")


SUPPORTED_EXTENSIONS: tuple[ExtensionPair, ...] = (
    ExtensionPair("[email]", "1"),
    ExtensionPair("[email]", "1"),
    ExtensionPair("[email]", "2"),
)

_current_extensions: list[ExtensionPair] = list(SUPPORTED_EXTENSIONS)


def get_supported_extension_by_name(name: str) -> ExtensionPair:
    """Return the first supported extension with this name."""
    for extension in SUPPORTED_EXTENSIONS:
        if extension.name == name:
            return extension
    raise ValueError(f"unsupported extension: {name}")


def set_sftp_extensions(*args: str) -> None:
    """Replace the advertised extensions; nothing changes if a name is unknown."""
    global _current_extensions
    chosen = [get_supported_extension_by_name(name) for name in args]
    _current_extensions = chosen


def current_extensions() -> list[ExtensionPair]:
    """Return the extensions the server currently advertises."""
    return list(_current_extensions)