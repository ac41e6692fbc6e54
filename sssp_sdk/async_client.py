"""Asynchronous SSSP client built on asyncio streams."""

from __future__ import annotations

import asyncio
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
from sssp_sdk.transport import (
    CONNECT_TIMEOUT,
    connect_error,
    decode_line,
    encode_line,
    is_unix,
    parse_tcp_address,
)

logger = logging.getLogger(__name__)


class AsyncSSSPClient:
    """Asynchronous client for the SSSP/1.0 scanning protocol.

    Same contract as :class:`~sssp_sdk.client.SSSPClient`; only one
    coroutine may use a client at a time.

    Args:
        debug_protocol: Log every line sent and received at DEBUG level.
        timeout: Connect timeout in seconds.

    Example::

        async with AsyncSSSPClient() as client:
            await client.connect("tcp", "savdi.internal:4010")
            result = await client.scan_file("/srv/uploads/report.pdf")
    """

    def __init__(self, debug_protocol: bool = False, timeout: float = CONNECT_TIMEOUT) -> None:
        self.debug_protocol = debug_protocol
        self._timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._remote = False
        self._state = SessionState.DISCONNECTED
        self._last = ScanResult(ScanOutcome.ERROR)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def remote(self) -> bool:
        return self._remote

    async def connect(self, kind: str, address: str) -> None:
        """Open a session with the daemon, closing any previous one first.

        Raises:
            SSSPConnectionError: If the socket cannot be opened.
            SSSPProtocolError: If the greeting or version handshake fails.
            SSSPIOError: If the connection drops during the handshake.
        """
        await self.close()
        try:
            if is_unix(kind):
                opening = asyncio.open_unix_connection(address)
            else:
                host, port = parse_tcp_address(address)
                opening = asyncio.open_connection(host, port)
            reader, writer = await asyncio.wait_for(opening, timeout=self._timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise connect_error(kind, address, exc) from exc

        self._reader, self._writer = reader, writer
        try:
            await self._handshake()
        except BaseException:
            await self._release()
            raise
        self._remote = kind == "remotetcp"
        self._state = SessionState.CONNECTED

    async def close(self) -> None:
        """Say ``BYE`` and release the connection.  No-op when not connected."""
        if self._writer is None:
            return
        try:
            await self._send(BYE)
            reply = await self._recv()
            if reply != BYE:
                logger.warning("SSSP daemon did not send the expected signoff: %r", reply)
        except SSSPIOError as exc:
            logger.warning("SSSP signoff failed: %s", exc)
        finally:
            await self._release()

    async def scan_file(self, path: Union[str, Path]) -> ScanResult:
        """Scan a single file.

        Raises:
            SSSPConnectionError: If the client is not connected.
            FileNotFoundError: In inline-data mode, if *path* does not exist.
        """
        return await self._scan(SCANFILE, path)

    async def scan_dir(self, path: Union[str, Path], recursive: bool = False) -> ScanResult:
        """Scan the files in a directory, and its subdirectories if *recursive*."""
        return await self._scan(SCANDIRR if recursive else SCANDIR, path)

    async def scan_bytes(self, data: bytes) -> ScanResult:
        """Scan an in-memory payload with ``SCANDATA``."""
        return await self._run(encode_scandata(data))

    def get_last_viruses(self) -> dict[str, str]:
        return dict(self._last.viruses)

    def get_last_message(self) -> str | None:
        return self._last.message

    async def __aenter__(self) -> AsyncSSSPClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _handshake(self) -> None:
        if await self._recv() != GREETING:
            raise SSSPProtocolError("bad server greeting")
        await self._send(PROTOCOL_VERSION)
        reply = await self._recv()
        if reply is None or not reply.startswith("ACC "):
            raise SSSPProtocolError("bad protocol version handshake")

    async def _scan(self, verb: str, path: Union[str, Path]) -> ScanResult:
        if self._writer is None:
            raise SSSPConnectionError("not connected to the SSSP daemon")
        self._last = ScanResult(ScanOutcome.ERROR)
        # Inline-data requests read and walk local files.
        request = await asyncio.to_thread(build_request, verb, path, self._remote)
        return await self._run(request)

    async def _run(self, request: bytes) -> ScanResult:
        if self._writer is None:
            raise SSSPConnectionError("not connected to the SSSP daemon")
        self._last = ScanResult(ScanOutcome.ERROR)
        response = ScanResponse()
        try:
            await self._send(request)
            while response.feed(await self._recv()):
                pass
        except SSSPIOError as exc:
            logger.warning("SSSP connection failed mid-scan: %s", exc)
        self._last = response.result()
        return self._last

    async def _send(self, message: Union[str, bytes]) -> None:
        assert self._writer is not None
        if self.debug_protocol:
            text = message if isinstance(message, str) else describe_request(message)
            logger.debug("SSSP < %s", text)
        try:
            self._writer.write(encode_line(message))
            await self._writer.drain()
        except OSError as exc:
            raise SSSPIOError(f"write failed: {exc}") from exc

    async def _recv(self) -> str | None:
        assert self._reader is not None
        try:
            line = decode_line(await self._reader.readline())
        except (OSError, ValueError) as exc:
            # ValueError: line longer than the stream reader's limit
            raise SSSPIOError(f"read failed: {exc}") from exc
        if self.debug_protocol:
            logger.debug("SSSP > %s", "(EOF)" if line is None else line)
        return line

    async def _release(self) -> None:
        writer = self._writer
        self._reader = self._writer = None
        self._state = SessionState.CLOSED
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("error closing SSSP socket: %s", exc)
