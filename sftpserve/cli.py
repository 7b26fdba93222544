"""Command line entry point: serve SFTP over standard input and output."""

from __future__ import annotations

import argparse
import sys

from .server import Server

__all__ = ["main"]


def main(argv: list[str] | None = None) -> int:
    """Run the server on stdin/stdout; return the process exit status."""
    parser = argparse.ArgumentParser(
        prog="sftpserve", description="SFTP subsystem serving the local file system."
    )
    parser.add_argument("-R", dest="read_only", action="store_true", help="read-only server")
    parser.add_argument("-e", dest="debug_stderr", action="store_true", help="debug to stderr")
    parser.add_argument("-l", dest="debug_level", default="none", help="debug level (ignored)")
    args = parser.parse_args(argv)

    debug_stream = sys.stderr if args.debug_stderr else None
    server = Server(
        sys.stdin.buffer,
        sys.stdout.buffer,
        debug_stream=debug_stream,
        read_only=args.read_only,
    )
    try:
        server.serve()
    except (OSError, ValueError, EOFError, NotImplementedError) as exc:
        if debug_stream is not None:
            debug_stream.write(f"sftp server completed with error: {exc}")
            debug_stream.flush()
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())