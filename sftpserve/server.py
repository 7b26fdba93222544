"""SFTP version 3 server that serves the local file system."""

from __future__ import annotations

import errno
import functools
import itertools
import logging
import os
import stat
import threading
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterator, TextIO

from .paths import clean_path, to_local_path_posix, to_local_path_windows
from .protocol import (
    PacketType,
    StatusCode,
    StatusError,
    current_extensions,
    unimplemented_packet_error,
)
from .statvfs import stat_vfs_for_path
from .wire import (
    Decoder,
    marshal_file_info,
    marshal_string,
    marshal_uint32,
    read_packet,
    write_packet,
)

__all__ = ["Server", "status_from_error"]

_log = logging.getLogger(__name__)

_PROTOCOL_VERSION = 3
_MAX_READ = 1 << 15
_READDIR_BATCH = 128
_SIX_MONTHS = 182 * 24 * 60 * 60

_ATTR_SIZE = 0x00000001
_ATTR_UIDGID = 0x00000002
_ATTR_PERMISSIONS = 0x00000004
_ATTR_ACMODTIME = 0x00000008

_FXF_READ = 0x01
_FXF_WRITE = 0x02
_FXF_CREAT = 0x08
_FXF_TRUNC = 0x10
_FXF_EXCL = 0x20

_EMPTY_ATTRS = marshal_uint32(0)

Reply = tuple[PacketType, bytes]


def _os_error(code: int, path: str | None = None) -> OSError:
    return OSError(code, os.strerror(code), path)


def _error_chain(err: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _translate_os_error(err: BaseException) -> int | None:
    """Map an error carrying an errno to a status code, or None if it has none."""
    if not isinstance(err, OSError) or err.errno is None:
        return None
    if err.errno == 0:
        return StatusCode.OK
    if err.errno == errno.ENOENT:
        return StatusCode.NO_SUCH_FILE
    if err.errno in (errno.EACCES, errno.EPERM):
        return StatusCode.PERMISSION_DENIED
    return StatusCode.FAILURE


def _classify(err: BaseException | None) -> tuple[int, str]:
    if err is None:
        return StatusCode.OK, ""
    message = str(err)
    if isinstance(err, FileNotFoundError) or (
        isinstance(err, OSError) and err.errno == errno.ENOENT
    ):
        return StatusCode.NO_SUCH_FILE, message
    code = _translate_os_error(err)
    if code is not None:
        return code, message
    if any(isinstance(link, EOFError) for link in _error_chain(err)):
        return StatusCode.EOF, message
    for link in _error_chain(err):
        if isinstance(link, StatusError):
            return link.code, message
    return StatusCode.FAILURE, message


def status_from_error(request_id: int, err: BaseException | None = None) -> bytes:
    """Build the SSH_FXP_STATUS payload that reports err (None means success)."""
    code, message = _classify(err)
    return (
        marshal_uint32(request_id)
        + marshal_uint32(int(code))
        + marshal_string(message)
        + marshal_string("")
    )


def _raw_bytes(decoder: Decoder) -> bytes:
    return decoder.string().encode("utf-8", "surrogateescape")


def _pread(fd: int, size: int, offset: int) -> bytes:
    if hasattr(os, "pread"):
        return os.pread(fd, size, offset)
    os.lseek(fd, offset, os.SEEK_SET)
    return os.read(fd, size)


def _pwrite(fd: int, data: bytes, offset: int) -> int:
    if hasattr(os, "pwrite"):
        return os.pwrite(fd, data, offset)
    os.lseek(fd, offset, os.SEEK_SET)
    return os.write(fd, data)


def _read_at(fd: int, size: int, offset: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = _pread(fd, remaining, offset)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
        offset += len(chunk)
    data = b"".join(chunks)
    if size and not data:
        raise EOFError("EOF")
    return data


def _write_at(fd: int, data: bytes, offset: int) -> None:
    view = memoryview(data)
    while view:
        written = _pwrite(fd, view.tobytes(), offset)
        view = view[written:]
        offset += written


def _remove(path: str) -> None:
    """Remove a file or an empty directory, reporting the meaningful error."""
    try:
        os.remove(path)
        return
    except OSError as unlink_error:
        first = unlink_error
    try:
        os.rmdir(path)
    except OSError as rmdir_error:
        if rmdir_error.errno != errno.ENOTDIR:
            raise rmdir_error from None
        raise first from None


@functools.lru_cache(maxsize=256)
def _user_name(uid: int) -> str:
    try:
        import pwd

        return pwd.getpwuid(uid).pw_name
    except (ImportError, KeyError):
        return str(uid)


@functools.lru_cache(maxsize=256)
def _group_name(gid: int) -> str:
    try:
        import grp

        return grp.getgrgid(gid).gr_name
    except (ImportError, KeyError):
        return str(gid)


def _long_name(name: str, info: os.stat_result) -> str:
    """Format a directory entry the way `ls -l` does."""
    moment = time.localtime(info.st_mtime)
    if abs(time.time() - info.st_mtime) < _SIX_MONTHS:
        stamp = time.strftime("%b %d %H:%M", moment)
    else:
        stamp = time.strftime("%b %d  %Y", moment)
    return (
        f"{stat.filemode(info.st_mode)} {info.st_nlink:4d} "
        f"{_user_name(info.st_uid):<8} {_group_name(info.st_gid):<8} "
        f"{info.st_size:8d} {stamp:>12} {name}"
    )


def _name_payload(request_id: int, entries: list[tuple[str, str, bytes]]) -> bytes:
    parts = [marshal_uint32(request_id), marshal_uint32(len(entries))]
    for name, long_name, attrs in entries:
        parts += [marshal_string(name), marshal_string(long_name), attrs]
    return b"".join(parts)


def _attempt(action: Callable[[], Any]) -> BaseException | None:
    try:
        action()
    except (OSError, ValueError) as exc:
        return exc
    return None


def _chown_path(path: str, uid: int, gid: int) -> None:
    chown = getattr(os, "chown", None)
    if chown is None:
        raise _os_error(errno.ENOTSUP, path)
    chown(path, uid, gid)


@dataclass
class _Handle:
    """An open file or directory known to the client by its handle."""

    path: str
    fd: int | None = None
    entries: Any = None

    def close(self) -> None:
        if self.entries is not None:
            self.entries.close()
            self.entries = None
        if self.fd is not None:
            fd, self.fd = self.fd, None
            os.close(fd)


class Server:
    """An SFTP server speaking protocol version 3 over a pair of byte streams."""

    def __init__(
        self,
        reader: BinaryIO,
        writer: BinaryIO,
        debug_stream: TextIO | None = None,
        read_only: bool = False,
        work_dir: str = "",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.debug_stream = debug_stream
        self.read_only = read_only
        self.work_dir = clean_path(work_dir) if work_dir else ""
        self._handles: dict[str, _Handle] = {}
        self._handle_count = 0
        self._lock = threading.Lock()
        self._handlers: dict[PacketType, Callable[[int, Decoder], Reply]] = {
            PacketType.OPEN: self._open,
            PacketType.CLOSE: self._close_request,
            PacketType.READ: self._read,
            PacketType.WRITE: self._write,
            PacketType.LSTAT: self._lstat,
            PacketType.FSTAT: self._fstat,
            PacketType.SETSTAT: self._setstat,
            PacketType.FSETSTAT: self._fsetstat,
            PacketType.OPENDIR: self._opendir,
            PacketType.READDIR: self._readdir,
            PacketType.REMOVE: self._remove_request,
            PacketType.MKDIR: self._mkdir,
            PacketType.RMDIR: self._rmdir,
            PacketType.REALPATH: self._realpath,
            PacketType.STAT: self._stat,
            PacketType.RENAME: self._rename,
            PacketType.READLINK: self._readlink,
            PacketType.SYMLINK: self._symlink,
            PacketType.EXTENDED: self._extended,
        }

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def to_local_path(self, path: str) -> str:
        """Map a request path to a local path, resolving it against work_dir."""
        if os.name == "nt":
            return to_local_path_windows(path, self.work_dir)
        return to_local_path_posix(path, self.work_dir)

    def handle(self, packet_type: int, data: bytes) -> Reply:
        """Answer one request; return the reply type and payload.

        Raises ValueError for a malformed request and NotImplementedError
        for a packet type the server does not accept.
        """
        try:
            kind = PacketType(packet_type)
        except ValueError:
            raise unimplemented_packet_error(packet_type) from None
        decoder = Decoder(data)
        if kind is PacketType.INIT:
            return self._init(decoder)
        handler = self._handlers.get(kind)
        if handler is None:
            raise unimplemented_packet_error(packet_type)
        return handler(decoder.uint32(), decoder)

    def serve(self) -> None:
        """Answer requests until the input ends; raise if it ends uncleanly."""
        try:
            while True:
                packet = read_packet(self._reader)
                if packet is None:
                    return
                packet_type, payload = packet
                try:
                    reply_type, reply = self.handle(packet_type, payload)
                except (ValueError, NotImplementedError) as exc:
                    _log.debug("bad packet: %s", exc)
                    raise
                write_packet(self._writer, reply_type, reply)
        finally:
            self._close_handles(report=True)

    def close(self) -> None:
        """Close the output stream and every file still open."""
        self._close_handles(report=False)
        self._writer.close()

    def _close_handles(self, report: bool) -> None:
        with self._lock:
            handles, self._handles = self._handles, {}
        for name, handle in handles.items():
            if report and self.debug_stream is not None:
                self.debug_stream.write(
                    f'sftp server file with handle "{name}" left open: {handle.path}\n'
                )
            try:
                handle.close()
            except OSError as exc:
                _log.debug("closing %s: %s", handle.path, exc)

    def _add_handle(self, handle: _Handle) -> str:
        with self._lock:
            self._handle_count += 1
            name = str(self._handle_count)
            self._handles[name] = handle
        return name

    def _get_handle(self, name: str) -> _Handle:
        with self._lock:
            handle = self._handles.get(name)
        if handle is None:
            raise _os_error(errno.EBADF)
        return handle

    @staticmethod
    def _status(request_id: int, err: BaseException | None = None) -> Reply:
        return PacketType.STATUS, status_from_error(request_id, err)

    def _denied(self, request_id: int) -> Reply | None:
        if self.read_only:
            return self._status(request_id, _os_error(errno.EPERM))
        return None

    def _run(self, request_id: int, action: Callable[[], Any]) -> Reply:
        try:
            action()
        except OSError as exc:
            return self._status(request_id, exc)
        return self._status(request_id)

    def _init(self, decoder: Decoder) -> Reply:
        decoder.uint32()
        parts = [marshal_uint32(_PROTOCOL_VERSION)]
        for extension in current_extensions():
            parts += [marshal_string(extension.name), marshal_string(extension.data)]
        return PacketType.VERSION, b"".join(parts)

    def _attrs_reply(self, request_id: int, fetch: Callable[[], os.stat_result]) -> Reply:
        try:
            info = fetch()
        except OSError as exc:
            return self._status(request_id, exc)
        return PacketType.ATTRS, marshal_uint32(request_id) + marshal_file_info(info)

    def _stat(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        return self._attrs_reply(request_id, lambda: os.stat(path))

    def _lstat(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        return self._attrs_reply(request_id, lambda: os.lstat(path))

    def _fstat(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()

        def fetch() -> os.stat_result:
            handle = self._get_handle(name)
            if handle.fd is None:
                return os.stat(handle.path)
            return os.fstat(handle.fd)

        return self._attrs_reply(request_id, fetch)

    def _open(self, request_id: int, decoder: Decoder) -> Reply:
        path = decoder.string()
        pflags = decoder.uint32()
        if pflags & _FXF_WRITE and (denied := self._denied(request_id)):
            return denied

        if pflags & _FXF_READ and pflags & _FXF_WRITE:
            flags = os.O_RDWR
        elif pflags & _FXF_WRITE:
            flags = os.O_WRONLY
        elif pflags & _FXF_READ:
            flags = os.O_RDONLY
        else:
            return self._status(request_id, _os_error(errno.EINVAL))

        # Append is not honoured: the client sends explicit offsets.
        if pflags & _FXF_CREAT:
            flags |= os.O_CREAT
        if pflags & _FXF_TRUNC:
            flags |= os.O_TRUNC
        if pflags & _FXF_EXCL:
            flags |= os.O_EXCL
        flags |= getattr(os, "O_BINARY", 0)

        local = self.to_local_path(path)
        try:
            fd = os.open(local, flags, 0o644)
        except OSError as exc:
            return self._status(request_id, exc)
        name = self._add_handle(_Handle(path=local, fd=fd))
        return PacketType.HANDLE, marshal_uint32(request_id) + marshal_string(name)

    def _opendir(self, request_id: int, decoder: Decoder) -> Reply:
        local = self.to_local_path(decoder.string())
        try:
            if not stat.S_ISDIR(os.stat(local).st_mode):
                raise _os_error(errno.ENOTDIR, local)
            entries = os.scandir(local)
        except OSError as exc:
            return self._status(request_id, exc)
        name = self._add_handle(_Handle(path=local, entries=entries))
        return PacketType.HANDLE, marshal_uint32(request_id) + marshal_string(name)

    def _close_request(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()

        def close() -> None:
            with self._lock:
                handle = self._handles.pop(name, None)
            if handle is None:
                raise _os_error(errno.EBADF)
            handle.close()

        return self._run(request_id, close)

    def _read(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()
        offset = decoder.uint64()
        length = min(decoder.uint32(), _MAX_READ)
        try:
            handle = self._get_handle(name)
            if handle.fd is None:
                raise _os_error(errno.EISDIR, handle.path)
            data = _read_at(handle.fd, length, offset)
        except (OSError, EOFError) as exc:
            return self._status(request_id, exc)
        return PacketType.DATA, marshal_uint32(request_id) + marshal_string(data)

    def _write(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()
        offset = decoder.uint64()
        data = _raw_bytes(decoder)
        if denied := self._denied(request_id):
            return denied

        def write() -> None:
            handle = self._get_handle(name)
            if handle.fd is None:
                raise _os_error(errno.EISDIR, handle.path)
            _write_at(handle.fd, data, offset)

        return self._run(request_id, write)

    def _readdir(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()
        try:
            handle = self._get_handle(name)
            if handle.entries is None:
                handle.entries = os.scandir(handle.path)
            batch = list(itertools.islice(handle.entries, _READDIR_BATCH))
            if not batch:
                raise EOFError("EOF")
            entries = []
            for entry in batch:
                info = entry.stat(follow_symlinks=False)
                entries.append(
                    (entry.name, _long_name(entry.name, info), marshal_file_info(info))
                )
        except (OSError, EOFError) as exc:
            return self._status(request_id, exc)
        return PacketType.NAME, _name_payload(request_id, entries)

    @staticmethod
    def _apply_attrs(
        flags: int,
        attrs: Decoder,
        *,
        truncate: Callable[[int], None],
        chmod: Callable[[int], None],
        utime: Callable[[int, int], None],
        chown: Callable[[int, int], None],
    ) -> BaseException | None:
        # Each step replaces the outcome of the one before it.
        error: BaseException | None = None
        if flags & _ATTR_SIZE:
            error = _attempt(lambda: truncate(attrs.uint64()))
        if flags & _ATTR_PERMISSIONS:
            error = _attempt(lambda: chmod(attrs.uint32() & 0o7777))
        if flags & _ATTR_ACMODTIME:
            error = _attempt(lambda: utime(attrs.uint32(), attrs.uint32()))
        if flags & _ATTR_UIDGID:
            error = _attempt(lambda: chown(attrs.uint32(), attrs.uint32()))
        return error

    def _setstat(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        flags = decoder.uint32()
        attrs = Decoder(decoder.rest())
        if denied := self._denied(request_id):
            return denied
        _log.debug('setstat name "%s"', path)
        error = self._apply_attrs(
            flags,
            attrs,
            truncate=lambda size: os.truncate(path, size),
            chmod=lambda mode: os.chmod(path, mode),
            utime=lambda atime, mtime: os.utime(path, (atime, mtime)),
            chown=lambda uid, gid: _chown_path(path, uid, gid),
        )
        return self._status(request_id, error)

    def _fsetstat(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()
        flags = decoder.uint32()
        attrs = Decoder(decoder.rest())
        if denied := self._denied(request_id):
            return denied
        try:
            handle = self._get_handle(name)
        except OSError as exc:
            return self._status(request_id, exc)
        path, fd = handle.path, handle.fd
        _log.debug('fsetstat name "%s"', path)

        def truncate(size: int) -> None:
            if fd is None:
                os.truncate(path, size)
            else:
                os.ftruncate(fd, size)

        def chmod(mode: int) -> None:
            if fd is not None and hasattr(os, "fchmod"):
                os.fchmod(fd, mode)
            else:
                os.chmod(path, mode)

        def chown(uid: int, gid: int) -> None:
            if fd is not None and hasattr(os, "fchown"):
                os.fchown(fd, uid, gid)
            else:
                _chown_path(path, uid, gid)

        error = self._apply_attrs(
            flags,
            attrs,
            truncate=truncate,
            chmod=chmod,
            utime=lambda atime, mtime: os.utime(path, (atime, mtime)),
            chown=chown,
        )
        return self._status(request_id, error)

    def _mkdir(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        decoder.rest()  # requested attributes are not applied
        if denied := self._denied(request_id):
            return denied
        return self._run(request_id, lambda: os.mkdir(path, 0o755))

    def _rmdir(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        if denied := self._denied(request_id):
            return denied
        return self._run(request_id, lambda: _remove(path))

    def _remove_request(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        if denied := self._denied(request_id):
            return denied
        return self._run(request_id, lambda: _remove(path))

    def _rename(self, request_id: int, decoder: Decoder) -> Reply:
        old = self.to_local_path(decoder.string())
        new = self.to_local_path(decoder.string())
        if denied := self._denied(request_id):
            return denied
        return self._run(request_id, lambda: os.rename(old, new))

    def _symlink(self, request_id: int, decoder: Decoder) -> Reply:
        target = self.to_local_path(decoder.string())
        link = self.to_local_path(decoder.string())
        if denied := self._denied(request_id):
            return denied
        return self._run(request_id, lambda: os.symlink(target, link))

    def _readlink(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        try:
            target = os.readlink(path)
        except OSError as exc:
            return self._status(request_id, exc)
        return PacketType.NAME, _name_payload(request_id, [(target, target, _EMPTY_ATTRS)])

    def _realpath(self, request_id: int, decoder: Decoder) -> Reply:
        path = self.to_local_path(decoder.string())
        try:
            resolved = clean_path(os.path.abspath(path))
        except OSError as exc:
            return self._status(request_id, exc)
        return PacketType.NAME, _name_payload(
            request_id, [(resolved, resolved, _EMPTY_ATTRS)]
        )

    def _extended(self, request_id: int, decoder: Decoder) -> Reply:
        name = decoder.string()
        if name.partition("@")[0] != "statvfs":
            return self._status(
                request_id,
                StatusError(StatusCode.OP_UNSUPPORTED, "operation unsupported"),
            )
        path = decoder.string()
        try:
            info = stat_vfs_for_path(path)
        except OSError as exc:
            return self._status(request_id, exc)
        return PacketType.EXTENDED_REPLY, info.marshal(request_id)