import io
import sys
import types

from sftpserve.cli import main
from sftpserve.protocol import PacketType, StatusCode
from sftpserve.wire import Decoder, marshal_string, marshal_uint32, read_packet, write_packet


def _frame(packet_type, payload):
    out = io.BytesIO()
    write_packet(out, packet_type, payload)
    return out.getvalue()


_INIT = _frame(PacketType.INIT, marshal_uint32(3))


def _mkdir(path):
    return _frame(
        PacketType.MKDIR, marshal_uint32(1) + marshal_string(path) + marshal_uint32(0)
    )


def _run(monkeypatch, argv, data):
    out = io.BytesIO()
    monkeypatch.setattr(sys, "stdin", types.SimpleNamespace(buffer=io.BytesIO(data)))
    monkeypatch.setattr(sys, "stdout", types.SimpleNamespace(buffer=out))
    status = main(argv)
    out.seek(0)
    replies = []
    while (packet := read_packet(out)) is not None:
        replies.append(packet)
    return status, replies


def test_init_gets_version(monkeypatch):
    status, replies = _run(monkeypatch, [], _INIT)
    assert status == 0
    assert len(replies) == 1
    kind, payload = replies[0]
    assert kind == PacketType.VERSION
    assert Decoder(payload).uint32() == 3


def test_debug_level_is_accepted(monkeypatch):
    status, replies = _run(monkeypatch, ["-l", "DEBUG"], _INIT)
    assert status == 0
    assert [kind for kind, _ in replies] == [PacketType.VERSION]


def test_error_reported_with_debug(monkeypatch, capsys):
    status, _ = _run(monkeypatch, ["-e"], b"\x00\x00\x00\x00")
    assert status == 1
    assert capsys.readouterr().err.startswith("sftp server completed with error: ")


def test_error_silent_without_debug(monkeypatch, capsys):
    status, _ = _run(monkeypatch, [], b"\x00\x00\x00\x00")
    assert status == 1
    assert capsys.readouterr().err == ""


def test_read_only_flag_denies_mkdir(monkeypatch, tmp_path):
    target = tmp_path / "made"
    status, replies = _run(monkeypatch, ["-R"], _INIT + _mkdir(str(target)))
    assert status == 0
    kind, payload = replies[1]
    dec = Decoder(payload)
    assert kind == PacketType.STATUS
    assert dec.uint32() == 1
    assert dec.uint32() == StatusCode.PERMISSION_DENIED
    assert not target.exists()


def test_mkdir_without_read_only(monkeypatch, tmp_path):
    target = tmp_path / "made"
    status, replies = _run(monkeypatch, [], _INIT + _mkdir(str(target)))
    assert status == 0
    dec = Decoder(replies[1][1])
    dec.uint32()
    assert dec.uint32() == StatusCode.OK
    assert target.is_dir()