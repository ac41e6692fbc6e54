"""Socket ownership and the CRLF line codec."""

from __future__ import annotations

import logging
import socket
from typing import BinaryIO, Union

from sssp_sdk.exceptions import SSSPConnectionError, SSSPIOError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0
DEFAULT_PORT = 4010  # SAVDI's default SSSP port
CRLF = b"\r\n"


def encode_line(message: Union[str, bytes]) -> bytes:
    """Terminate *message* with CRLF, encoding text as UTF-8."""
    if isinstance(message, str):
        message = message.encode("utf-8", "surrogateescape")
    return message + CRLF


def decode_line(raw: bytes) -> str | None:
    """Strip trailing line terminators from *raw*.

    Returns ``None`` for end-of-stream (no bytes at all), which is distinct
    from ``""`` for a blank line.
    """
    if not raw:
        return None
    return raw.rstrip(b"\r\n").decode("utf-8", "surrogateescape")


def is_unix(kind: str) -> bool:
    return kind == "unix"


def connect_error(kind: str, address: str, exc: Exception) -> SSSPConnectionError:
    """Describe a failed connect, keeping the socket kind and errno."""
    reason = getattr(exc, "strerror", None) or str(exc) or "timed out"
    errno = getattr(exc, "errno", None)
    return SSSPConnectionError(
        f"cannot open {'unix' if is_unix(kind) else 'tcp'} socket {address}: {reason} ({errno})"
    )


def parse_tcp_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``); the port defaults to 4010."""
    host, sep, port = address.rpartition(":")
    if not sep or "]" in port:
        host, port = address, ""
    host = host.strip("[]") or "localhost"
    if not port:
        return host, DEFAULT_PORT
    if not port.isdigit():
        raise SSSPConnectionError(f"invalid tcp address: {address!r}")
    return host, int(port)


class Transport:
    """A single bidirectional byte stream to the daemon.

    Use :meth:`open` to connect.  The connect itself is bounded by *timeout*;
    afterwards reads and writes block until they complete.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock: socket.socket | None = sock
        self._reader: BinaryIO | None = sock.makefile("rb")

    @classmethod
    def open(cls, kind: str, address: str, timeout: float = CONNECT_TIMEOUT) -> Transport:
        """Connect to *address* over a Unix socket or TCP.

        Raises:
            SSSPConnectionError: If the socket cannot be established.
        """
        try:
            if is_unix(kind):
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                try:
                    sock.settimeout(timeout)
                    sock.connect(address)
                except OSError:
                    sock.close()
                    raise
            else:
                sock = socket.create_connection(parse_tcp_address(address), timeout=timeout)
        except OSError as exc:
            raise connect_error(kind, address, exc) from exc
        sock.settimeout(None)
        return cls(sock)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def read_line(self) -> str | None:
        """Read one line, or ``None`` at end-of-stream.

        Raises:
            SSSPIOError: If the socket read fails.
        """
        if self._reader is None:
            raise SSSPIOError("transport is closed")
        try:
            raw = self._reader.readline()
        except OSError as exc:
            raise SSSPIOError(f"read failed: {exc}") from exc
        return decode_line(raw)

    def write_line(self, message: Union[str, bytes]) -> None:
        """Send *message* followed by CRLF.

        Raises:
            SSSPIOError: If the socket write fails.
        """
        if self._sock is None:
            raise SSSPIOError("transport is closed")
        try:
            self._sock.sendall(encode_line(message))
        except OSError as exc:
            raise SSSPIOError(f"write failed: {exc}") from exc

    def close(self) -> None:
        """Release the socket.  Safe to call more than once."""
        reader, sock = self._reader, self._sock
        self._reader = None
        self._sock = None
        if reader is not None:
            reader.close()
        if sock is not None:
            try:
                sock.close()
            except OSError as exc:
                logger.debug("error closing SSSP socket: %s", exc)
