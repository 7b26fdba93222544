"""SFTP version 3 server that serves the local filesystem over a pair of streams."""

__version__ = "0.1.0"

__all__ = ["__version__"]