"""Synchronous SSSP client for the Sophos SAVDI daemon."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from sssp_sdk.exceptions import SSSPConnectionError, SSSPIOError, SSSPProtocolError
from sssp_sdk.models import ScanOutcome, ScanResult, SessionState
from sssp_sdk.protocol import (
    BYE,
    GREETING,
    PROTOCOL_VERSION,
    SCANDIR,
    SCANDIRR,
    SCANFILE,
    ScanResponse,
    build_request,
    describe_request,
    encode_scandata,
)
from sssp_sdk.settings import SSSPSettings
from sssp_sdk.transport import CONNECT_TIMEOUT, Transport

logger = logging.getLogger(__name__)


class SSSPClient:
    """Synchronous client for the SSSP/1.0 scanning protocol.

    One client owns at most one daemon connection and runs one request at a
    time.  Scans report daemon-side failures through
    :attr:`ScanResult.outcome` rather than by raising.

    Args:
        debug_protocol: Log every line sent and received at DEBUG level.
        timeout: Connect timeout in seconds.

    Example::

        with SSSPClient() as client:
            client.connect("unix", "/var/run/savdi/sssp.sock")
            result = client.scan_file("/tmp/sample.txt")
            print(result.outcome, result.viruses)
    """

    def __init__(self, debug_protocol: bool = False, timeout: float = CONNECT_TIMEOUT) -> None:
        self.debug_protocol = debug_protocol
        self._timeout = timeout
        self._transport: Transport | None = None
        self._remote = False
        self._state = SessionState.DISCONNECTED
        self._last = ScanResult(ScanOutcome.ERROR)

    @classmethod
    def from_settings(cls, settings: SSSPSettings | None = None) -> SSSPClient:
        """Create a client and connect it using *settings* (default: environment)."""
        settings = settings or SSSPSettings.from_env()
        client = cls(debug_protocol=settings.debug_protocol)
        client.connect(settings.conntype, settings.address)
        return client

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def remote(self) -> bool:
        """Whether scans send file contents inline instead of paths."""
        return self._remote

    def connect(self, kind: str, address: str) -> None:
        """Open a session with the daemon, closing any previous one first.

        Args:
            kind: ``"unix"``, ``"tcp"`` or ``"remotetcp"``.  Anything other
                than ``"unix"`` connects over TCP; ``"remotetcp"`` also makes
                every scan send its data inline.
            address: Socket path, or ``host:port``.

        Raises:
            SSSPConnectionError: If the socket cannot be opened.
            SSSPProtocolError: If the greeting or version handshake fails.
            SSSPIOError: If the connection drops during the handshake.
        """
        self.close()
        transport = Transport.open(kind, address, self._timeout)
        try:
            self._handshake(transport)
        except BaseException:
            transport.close()
            self._state = SessionState.CLOSED
            raise
        self._transport = transport
        self._remote = kind == "remotetcp"
        self._state = SessionState.CONNECTED

    def close(self) -> None:
        """Say ``BYE`` and release the connection.  No-op when not connected."""
        transport = self._transport
        if transport is None:
            return
        self._transport = None
        try:
            self._send(transport, BYE)
            reply = self._recv(transport)
            if reply != BYE:
                logger.warning("SSSP daemon did not send the expected signoff: %r", reply)
        except SSSPIOError as exc:
            logger.warning("SSSP signoff failed: %s", exc)
        finally:
            transport.close()
            self._state = SessionState.CLOSED

    def scan_file(self, path: Union[str, Path]) -> ScanResult:
        """Scan a single file.

        Args:
            path: File to scan, as seen by this host.

        Returns:
            A :class:`ScanResult` with the scan outcome.

        Raises:
            SSSPConnectionError: If the client is not connected.
            FileNotFoundError: In inline-data mode, if *path* does not exist.
        """
        return self._scan(SCANFILE, path)

    def scan_dir(self, path: Union[str, Path], recursive: bool = False) -> ScanResult:
        """Scan the files in a directory, and its subdirectories if *recursive*.

        Returns:
            A :class:`ScanResult`; ``viruses`` maps each infected file to the
            virus name.
        """
        return self._scan(SCANDIRR if recursive else SCANDIR, path)

    def scan_bytes(self, data: bytes) -> ScanResult:
        """Scan an in-memory payload with ``SCANDATA``.

        Args:
            data: Raw content to scan.

        Returns:
            A :class:`ScanResult` with the scan outcome.
        """
        return self._run(encode_scandata(data))

    def get_last_viruses(self) -> dict[str, str]:
        """Viruses found by the most recent scan (identifier -> virus name)."""
        return dict(self._last.viruses)

    def get_last_message(self) -> str | None:
        """``"<code> <text>"`` reported by the daemon for the most recent scan."""
        return self._last.message

    def __enter__(self) -> SSSPClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handshake(self, transport: Transport) -> None:
        if self._recv(transport) != GREETING:
            raise SSSPProtocolError("bad server greeting")
        self._send(transport, PROTOCOL_VERSION)
        reply = self._recv(transport)
        if reply is None or not reply.startswith("ACC "):
            raise SSSPProtocolError("bad protocol version handshake")

    def _scan(self, verb: str, path: Union[str, Path]) -> ScanResult:
        self._require_session()
        self._last = ScanResult(ScanOutcome.ERROR)
        return self._run(build_request(verb, path, remote=self._remote))

    def _run(self, request: bytes) -> ScanResult:
        transport = self._require_session()
        self._last = ScanResult(ScanOutcome.ERROR)
        response = ScanResponse()
        try:
            self._send(transport, request)
            while response.feed(self._recv(transport)):
                pass
        except SSSPIOError as exc:
            logger.warning("SSSP connection failed mid-scan: %s", exc)
        self._last = response.result()
        return self._last

    def _require_session(self) -> Transport:
        if self._transport is None:
            raise SSSPConnectionError("not connected to the SSSP daemon")
        return self._transport

    def _send(self, transport: Transport, message: Union[str, bytes]) -> None:
        if self.debug_protocol:
            text = message if isinstance(message, str) else describe_request(message)
            logger.debug("SSSP < %s", text)
        transport.write_line(message)

    def _recv(self, transport: Transport) -> str | None:
        line = transport.read_line()
        if self.debug_protocol:
            logger.debug("SSSP > %s", "(EOF)" if line is None else line)
        return line
