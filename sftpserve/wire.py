"""Encoding and framing of SFTP packets."""

from __future__ import annotations

import os
from typing import BinaryIO

from .filemode import from_file_mode, to_file_mode

__all__ = [
    "Decoder",
    "marshal_uint32",
    "marshal_uint64",
    "marshal_string",
    "marshal_file_info",
    "read_packet",
    "write_packet",
]

_ATTR_SIZE = 0x00000001
_ATTR_UIDGID = 0x00000002
_ATTR_PERMISSIONS = 0x00000004
_ATTR_ACMODTIME = 0x00000008

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class Decoder:
    """Reads big-endian integers and strings from a packet payload."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data) - self._pos

    def _take(self, count: int) -> bytes:
        if len(self) < count:
            raise ValueError("sftp: short packet")
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def uint32(self) -> int:
        """Read an unsigned 32-bit integer."""
        return int.from_bytes(self._take(4), "big")

    def uint64(self) -> int:
        """Read an unsigned 64-bit integer."""
        return int.from_bytes(self._take(8), "big")

    def string(self) -> str:
        """Read a length-prefixed string; undecodable bytes survive re-encoding."""
        length = self.uint32()
        return self._take(length).decode(_ENCODING, _ERRORS)

    def rest(self) -> bytes:
        """Return every byte not yet read."""
        return self._take(len(self))


def marshal_uint32(value: int) -> bytes:
    """Encode an unsigned 32-bit integer."""
    return value.to_bytes(4, "big")


def marshal_uint64(value: int) -> bytes:
    """Encode an unsigned 64-bit integer."""
    return value.to_bytes(8, "big")


def marshal_string(value: str | bytes) -> bytes:
    """Encode a length-prefixed string."""
    if isinstance(value, str):
        value = value.encode(_ENCODING, _ERRORS)
    return marshal_uint32(len(value)) + value


def marshal_file_info(info: os.stat_result | None) -> bytes:
    """Encode version 3 file attributes; None encodes an empty attribute set."""
    if info is None:
        return marshal_uint32(0)

    flags = _ATTR_SIZE | _ATTR_PERMISSIONS | _ATTR_ACMODTIME
    with_owner = os.name == "posix"
    if with_owner:
        flags |= _ATTR_UIDGID

    mtime = int(info.st_mtime) & 0xFFFFFFFF
    atime = int(info.st_atime) & 0xFFFFFFFF if with_owner else mtime
    mode = from_file_mode(to_file_mode(info.st_mode))

    parts = [marshal_uint32(flags), marshal_uint64(info.st_size)]
    if with_owner:
        parts += [marshal_uint32(info.st_uid), marshal_uint32(info.st_gid)]
    parts += [marshal_uint32(mode), marshal_uint32(atime), marshal_uint32(mtime)]
    return b"".join(parts)


def _read_exact(stream: BinaryIO, count: int) -> bytes:
    chunks = []
    remaining = count
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_packet(stream: BinaryIO) -> tuple[int, bytes] | None:
    """Read one packet and return its type and payload.

    Returns None when the stream ends cleanly between packets, raises
    EOFError when it ends inside a packet and ValueError for a packet of
    length zero.
    """
    header = _read_exact(stream, 4)
    if not header:
        return None
    if len(header) < 4:
        raise EOFError("sftp: stream ended inside a packet header")
    length = int.from_bytes(header, "big")
    if length == 0:
        raise ValueError("sftp: short packet")
    body = _read_exact(stream, length)
    if len(body) < length:
        raise EOFError("sftp: stream ended inside a packet")
    return body[0], body[1:]


def write_packet(stream: BinaryIO, packet_type: int, payload: bytes) -> None:
    """Frame and write one packet."""
    frame = marshal_uint32(len(payload) + 1) + bytes([int(packet_type)]) + payload
    stream.write(frame)
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()