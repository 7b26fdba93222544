import errno
import os
import struct
import sys
from types import SimpleNamespace

import pytest

from sftpserve.statvfs import StatVFS, stat_vfs_for_path


def _fake_result():
    return SimpleNamespace(
        f_bsize=4096,
        f_frsize=1024,
        f_blocks=500,
        f_bfree=300,
        f_bavail=250,
        f_files=90,
        f_ffree=40,
        f_favail=35,
        f_fsid=77,
        f_flag=6,
        f_namemax=255,
    )


@pytest.fixture
def fake_statvfs(monkeypatch):
    calls = []

    def fake(path):
        calls.append(path)
        return _fake_result()

    monkeypatch.setattr(os, "statvfs", fake, raising=False)
    return calls


def test_linux_fields(monkeypatch, fake_statvfs):
    monkeypatch.setattr(sys, "platform", "linux")
    vfs = stat_vfs_for_path("/data")
    assert fake_statvfs == ["/data"]
    assert vfs.bsize == 4096
    assert vfs.frsize == 1024
    assert vfs.namemax == 255
    assert vfs.fsid == 0
    assert vfs.favail == vfs.ffree == 40
    assert (vfs.blocks, vfs.bfree, vfs.bavail, vfs.files) == (500, 300, 250, 90)


def test_darwin_fields(monkeypatch, fake_statvfs):
    monkeypatch.setattr(sys, "platform", "darwin")
    vfs = stat_vfs_for_path("/")
    assert vfs.frsize == vfs.bsize == 4096
    assert vfs.namemax == 1024
    assert vfs.fsid == 77
    assert vfs.favail == vfs.ffree


def test_unsupported_platform_raises_enotsup(monkeypatch, fake_statvfs):
    monkeypatch.setattr(sys, "platform", "win32")
    with pytest.raises(OSError) as info:
        stat_vfs_for_path("/")
    assert info.value.errno == errno.ENOTSUP
    assert fake_statvfs == []


def test_os_error_propagates(monkeypatch):
    def failing(path):
        raise FileNotFoundError(errno.ENOENT, "missing", path)

    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setattr(os, "statvfs", failing, raising=False)
    with pytest.raises(FileNotFoundError):
        stat_vfs_for_path("/nope")


def test_marshal_round_trip():
    vfs = StatVFS(1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11)
    payload = vfs.marshal(42)
    assert len(payload) == 4 + 11 * 8
    values = struct.unpack(">I11Q", payload)
    assert values[0] == 42
    assert StatVFS(*values[1:]) == vfs


def test_marshal_is_big_endian():
    payload = StatVFS(bsize=1).marshal(7)
    assert payload[:4] == b"\x00\x00\x00\x07"
    assert payload[4:12] == b"\x00" * 7 + b"\x01"