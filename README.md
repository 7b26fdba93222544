# sftpserve

`sftpserve` is an SFTP server that implements most of version 3 of the SSH
File Transfer Protocol. It reads requests from one binary stream, writes
replies to another, and serves the local filesystem. It is meant to run as
the `sftp` subsystem of an SSH daemon: the daemon handles authentication and
encryption, and `sftpserve` handles the file operations.

## Features

- Open, read, write, close, stat, lstat, fstat, setstat and fsetstat
- Directory listing, with long names formatted like `ls -l`
- mkdir, rmdir, remove, rename, symlink, readlink and realpath
- Read-only mode: any request that would change the filesystem (including
  opening a file for writing) is answered with "permission denied"
- An optional working directory that relative paths are resolved against
- A `statvfs` extended request on Linux and macOS; on other platforms it
  is answered with a failure status

Some details of the behaviour:

- A single read request returns at most 32768 bytes.
- The append open flag is ignored; writes go to the offsets the client
  sends.
- Attributes sent with mkdir are ignored; directories are created with mode
  `0o755`, files with `0o644`.
- Unknown extended requests are answered with `SSH_FX_OP_UNSUPPORTED`.

## Installation

```
pip install sftpserve
```

## Running as an SSH subsystem

Installing the package adds the `sftpserve` command. It talks SFTP over its
standard input and output, so an SSH server can start it as a subsystem.
For OpenSSH, add this line to `sshd_config`:

```
Subsystem sftp /path/to/sftpserve
```

Options:

| Flag | Meaning |
| ---- | ------- |
| `-R` | Serve in read-only mode |
| `-e` | Write diagnostics to standard error: files the client left open, and the error a session ended with |
| `-l LEVEL` | Debug level (accepted and ignored) |

For example, to serve read-only with diagnostics on standard error:

```
sftpserve -R -e
```

The command exits with status 0 when the input ends cleanly between packets
and with status 1 when the session ends with an error (for example a
truncated or malformed packet).

## Using the server from Python

`sftpserve.server.Server` takes a binary reader and a binary writer.
`serve()` answers packets one after another until the input ends.

```python
import sys

from sftpserve.server import Server

server = Server(
    sys.stdin.buffer,
    sys.stdout.buffer,
    debug_stream=sys.stderr,
    read_only=True,
    work_dir="/srv/files",
)
server.serve()
```

- `Server.handle(packet_type, data)` answers a single request and returns
  the reply type and payload, without any framing.
- `Server.to_local_path(path)` shows how a path the client sent maps to a
  local path, taking the working directory into account.
- `Server.close()` closes the output stream and any file handles that are
  still open. `Server` can also be used as a context manager.
- `status_from_error(request_id, err)` builds the `SSH_FXP_STATUS` payload
  that reports a Python exception (or success, when `err` is `None`).

## Protocol helpers

- `sftpserve.protocol` holds the enumerations `PacketType`, `StatusCode`
  and `OpenFlag`, the `StatusError` exception (its `fx_code()` method
  returns the status code), and extension negotiation:
  `set_sftp_extensions(*names)` chooses which supported extensions the
  server advertises and raises `ValueError`, leaving the set unchanged, if
  a name is not supported; `current_extensions()` returns the set
  advertised now.
- `sftpserve.wire` has the low-level encoding: `read_packet`,
  `write_packet`, `marshal_uint32`, `marshal_uint64`, `marshal_string`,
  `marshal_file_info`, and a `Decoder` for parsing payloads.
- `sftpserve.filemode` converts between POSIX mode bits and `FileMode`
  values, and maps errno values to status codes.
- `sftpserve.paths` maps request paths to local paths for POSIX, Windows
  and Plan 9 conventions.
- `sftpserve.statvfs` provides `StatVFS` and `stat_vfs_for_path`.

## What it does not do

`sftpserve` is only the file-transfer side. It has no SSH transport, no
authentication and no encryption; it must be started by something that
provides those, such as an SSH daemon. It contains no SFTP client. Requests
are handled one at a time, in the order they arrive.

## Running the tests

```
pip install -e ".[test]"
pytest
```