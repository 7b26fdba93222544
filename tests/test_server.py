import errno
import io
import os

import pytest

from sftpserve.protocol import PacketType, StatusCode, StatusError, current_extensions
from sftpserve.server import Server, status_from_error
from sftpserve.wire import (
    Decoder,
    marshal_string,
    marshal_uint32,
    marshal_uint64,
    read_packet,
    write_packet,
)

READ = 0x01
WRITE = 0x02
CREAT = 0x08
TRUNC = 0x10


def _server(**kwargs):
    return Server(io.BytesIO(), io.BytesIO(), **kwargs)


def _req(request_id, *fields):
    return marshal_uint32(request_id) + b"".join(fields)


def _status(reply):
    kind, payload = reply
    assert kind == PacketType.STATUS
    dec = Decoder(payload)
    return dec.uint32(), dec.uint32(), dec.string()


def _open(server, path, flags, request_id=1):
    kind, payload = server.handle(
        PacketType.OPEN,
        _req(request_id, marshal_string(path), marshal_uint32(flags), marshal_uint32(0)),
    )
    assert kind == PacketType.HANDLE
    dec = Decoder(payload)
    assert dec.uint32() == request_id
    return dec.string()


def _decode_status_payload(payload):
    dec = Decoder(payload)
    return dec.uint32(), dec.uint32(), dec.string(), dec.string()


def test_invalid_extended_packet():
    server = _server()
    reply = server.handle(
        PacketType.EXTENDED,
        _req(7, marshal_string("thisDoesn'tExist"), marshal_string("foobar")),
    )
    request_id, code, _ = _status(reply)
    assert request_id == 7
    assert code == StatusCode.OP_UNSUPPORTED


def test_repeated_open_close(tmp_path):
    target = tmp_path / "data.txt"
    target.write_bytes(b"contents")
    server = _server()
    handles = set()
    for request_id in range(1, 65):
        handle = _open(server, str(target), READ, request_id)
        handles.add(handle)
        reply = server.handle(PacketType.CLOSE, _req(request_id, marshal_string(handle)))
        assert _status(reply)[1] == StatusCode.OK
    assert len(handles) == 64


@pytest.mark.parametrize(
    "request_id, err, code",
    [
        (1, OSError(errno.ENOENT, os.strerror(errno.ENOENT)), StatusCode.NO_SUCH_FILE),
        (2, OSError(errno.ENOENT, os.strerror(errno.ENOENT), "x"), StatusCode.NO_SUCH_FILE),
        (3, OSError("foo"), StatusCode.FAILURE),
        (4, StatusError(StatusCode.EOF), StatusCode.EOF),
        (5, StatusError(StatusCode.OP_UNSUPPORTED), StatusCode.OP_UNSUPPORTED),
        (6, EOFError("EOF"), StatusCode.EOF),
        (7, FileNotFoundError(), StatusCode.NO_SUCH_FILE),
    ],
)
def test_status_from_error(request_id, err, code):
    got_id, got_code, msg, lang = _decode_status_payload(status_from_error(request_id, err))
    assert (got_id, got_code, msg, lang) == (request_id, code, str(err), "")


def test_status_from_no_error():
    assert _decode_status_payload(status_from_error(9)) == (9, StatusCode.OK, "", "")


def _wrapped(inner):
    try:
        raise RuntimeError("wrapped error") from inner
    except RuntimeError as exc:
        return exc


@pytest.mark.parametrize(
    "err, code",
    [
        (Exception("random error"), StatusCode.FAILURE),
        (OSError(errno.EBADF, os.strerror(errno.EBADF)), StatusCode.FAILURE),
        (OSError(errno.ENOENT, os.strerror(errno.ENOENT)), StatusCode.NO_SUCH_FILE),
        (OSError(errno.EPERM, os.strerror(errno.EPERM)), StatusCode.PERMISSION_DENIED),
        (EOFError(), StatusCode.EOF),
        (_wrapped(StatusError(StatusCode.PERMISSION_DENIED)), StatusCode.PERMISSION_DENIED),
        (_wrapped(StatusError(StatusCode.OP_UNSUPPORTED)), StatusCode.OP_UNSUPPORTED),
    ],
)
def test_error_codes(err, code):
    assert _decode_status_payload(status_from_error(1, err))[1] == code


def test_open_then_lstat(tmp_path):
    target = str(tmp_path / "stat_race")
    server = _server()
    _open(server, target, READ | WRITE | CREAT | TRUNC)
    kind, payload = server.handle(PacketType.LSTAT, _req(2, marshal_string(target)))
    assert kind == PacketType.ATTRS
    assert Decoder(payload).uint32() == 2


@pytest.mark.parametrize("path", ["/doesnotexist", "/doesnotexist/a/b"])
def test_stat_non_existent(path):
    reply = _server().handle(PacketType.STAT, _req(1, marshal_string(path)))
    assert _status(reply)[1] == StatusCode.NO_SUCH_FILE


def _frame(packet_type, payload):
    out = io.BytesIO()
    write_packet(out, packet_type, payload)
    return out.getvalue()


_VALID_INIT = _frame(PacketType.INIT, marshal_uint32(3))
_BROKEN_OPEN = _frame(
    PacketType.OPEN,
    _req(0, marshal_string("foo"), marshal_uint32(0), marshal_uint32(0)),
)[:-2]


@pytest.mark.parametrize(
    "data, error",
    [
        (b"\x00\x00\x00\x00", ValueError),
        (_VALID_INIT + b"\x00\x00\x00\x00", ValueError),
        (_VALID_INIT + _BROKEN_OPEN, EOFError),
    ],
)
def test_serve_with_broken_client(data, error):
    server = Server(io.BytesIO(data), io.BytesIO())
    with pytest.raises(error):
        server.serve()


def test_serve_answers_init():
    out = io.BytesIO()
    Server(io.BytesIO(_VALID_INIT), out).serve()
    out.seek(0)
    kind, payload = read_packet(out)
    dec = Decoder(payload)
    assert kind == PacketType.VERSION
    assert dec.uint32() == 3
    names = []
    while len(dec):
        names.append((dec.string(), dec.string()))
    assert names == [(e.name, e.data) for e in current_extensions()]


def test_serve_reports_left_open_files(tmp_path):
    target = tmp_path / "left.txt"
    target.write_bytes(b"x")
    request = _frame(
        PacketType.OPEN,
        _req(1, marshal_string(str(target)), marshal_uint32(READ), marshal_uint32(0)),
    )
    debug = io.StringIO()
    Server(io.BytesIO(_VALID_INIT + request), io.BytesIO(), debug_stream=debug).serve()
    assert debug.getvalue() == (
        f'sftp server file with handle "1" left open: {target}\n'
    )


def test_unknown_packet_type():
    with pytest.raises(NotImplementedError):
        _server().handle(PacketType.STATUS, _req(1))


def test_write_then_read(tmp_path):
    target = str(tmp_path / "rw.bin")
    server = _server()
    handle = _open(server, target, READ | WRITE | CREAT)
    reply = server.handle(
        PacketType.WRITE,
        _req(2, marshal_string(handle), marshal_uint64(0), marshal_string(b"hello world")),
    )
    assert _status(reply)[1] == StatusCode.OK
    kind, payload = server.handle(
        PacketType.READ,
        _req(3, marshal_string(handle), marshal_uint64(6), marshal_uint32(32)),
    )
    dec = Decoder(payload)
    assert kind == PacketType.DATA
    assert dec.uint32() == 3
    assert dec.string() == "world"


def test_read_past_end_is_eof(tmp_path):
    target = tmp_path / "short.txt"
    target.write_bytes(b"abc")
    server = _server()
    handle = _open(server, str(target), READ)
    reply = server.handle(
        PacketType.READ,
        _req(2, marshal_string(handle), marshal_uint64(10), marshal_uint32(4)),
    )
    assert _status(reply)[1] == StatusCode.EOF


def test_read_only_denies_writes(tmp_path):
    server = _server(read_only=True)
    target = tmp_path / "new"
    reply = server.handle(
        PacketType.OPEN,
        _req(1, marshal_string(str(target)), marshal_uint32(WRITE | CREAT), marshal_uint32(0)),
    )
    assert _status(reply)[1] == StatusCode.PERMISSION_DENIED
    reply = server.handle(
        PacketType.MKDIR, _req(2, marshal_string(str(target)), marshal_uint32(0))
    )
    assert _status(reply)[1] == StatusCode.PERMISSION_DENIED
    assert not target.exists()


def test_open_without_flags_fails(tmp_path):
    reply = _server().handle(
        PacketType.OPEN,
        _req(1, marshal_string(str(tmp_path / "f")), marshal_uint32(0), marshal_uint32(0)),
    )
    assert _status(reply)[1] == StatusCode.FAILURE


def test_close_unknown_handle():
    reply = _server().handle(PacketType.CLOSE, _req(4, marshal_string("99")))
    assert _status(reply)[:2] == (4, StatusCode.FAILURE)


def test_readdir_lists_then_eof(tmp_path):
    for name in ("a", "b", "c"):
        (tmp_path / name).write_bytes(b"")
    server = _server()
    kind, payload = server.handle(PacketType.OPENDIR, _req(1, marshal_string(str(tmp_path))))
    assert kind == PacketType.HANDLE
    dec = Decoder(payload)
    dec.uint32()
    handle = dec.string()

    kind, payload = server.handle(PacketType.READDIR, _req(2, marshal_string(handle)))
    assert kind == PacketType.NAME
    dec = Decoder(payload)
    assert dec.uint32() == 2
    count = dec.uint32()
    names = []
    for _ in range(count):
        names.append(dec.string())
        long_name = dec.string()
        assert long_name.endswith(names[-1])
        flags = dec.uint32()
        assert flags & 0x1
        dec.uint64()
        if flags & 0x2:
            dec.uint32()
            dec.uint32()
        dec.uint32()
        dec.uint32()
        dec.uint32()
    assert sorted(names) == ["a", "b", "c"]

    reply = server.handle(PacketType.READDIR, _req(3, marshal_string(handle)))
    assert _status(reply)[1] == StatusCode.EOF


def test_opendir_on_file_fails(tmp_path):
    target = tmp_path / "file"
    target.write_bytes(b"")
    reply = _server().handle(PacketType.OPENDIR, _req(1, marshal_string(str(target))))
    assert _status(reply)[1] == StatusCode.FAILURE


def test_setstat_truncates(tmp_path):
    target = tmp_path / "trunc.txt"
    target.write_bytes(b"hello world")
    reply = _server().handle(
        PacketType.SETSTAT,
        _req(1, marshal_string(str(target)), marshal_uint32(0x1), marshal_uint64(5)),
    )
    assert _status(reply)[1] == StatusCode.OK
    assert target.read_bytes() == b"hello"


def test_mkdir_rename_and_remove(tmp_path):
    server = _server()
    first = tmp_path / "one"
    second = tmp_path / "two"
    reply = server.handle(PacketType.MKDIR, _req(1, marshal_string(str(first)), marshal_uint32(0)))
    assert _status(reply)[1] == StatusCode.OK
    assert first.is_dir()
    reply = server.handle(
        PacketType.RENAME, _req(2, marshal_string(str(first)), marshal_string(str(second)))
    )
    assert _status(reply)[1] == StatusCode.OK
    assert second.is_dir() and not first.exists()
    reply = server.handle(PacketType.RMDIR, _req(3, marshal_string(str(second))))
    assert _status(reply)[1] == StatusCode.OK
    assert not second.exists()


def test_remove_missing_file():
    reply = _server().handle(PacketType.REMOVE, _req(1, marshal_string("/doesnotexist")))
    assert _status(reply)[1] == StatusCode.NO_SUCH_FILE


def test_realpath_cleans(tmp_path):
    kind, payload = _server().handle(
        PacketType.REALPATH, _req(5, marshal_string(str(tmp_path / "a" / ".." / "b")))
    )
    dec = Decoder(payload)
    assert kind == PacketType.NAME
    assert dec.uint32() == 5
    assert dec.uint32() == 1
    assert dec.string() == str(tmp_path / "b")


def test_work_dir_resolves_relative_paths():
    server = _server(work_dir="/srv/data")
    assert server.to_local_path("file") == "/srv/data/file"
    assert server.to_local_path("/etc/hosts") == "/etc/hosts"