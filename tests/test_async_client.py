"""Tests for the asynchronous client (AsyncSSSPClient)."""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
import threading
from contextlib import asynccontextmanager

import pytest

import sssp_sdk.async_client
from sssp_sdk.async_client import AsyncSSSPClient
from sssp_sdk.exceptions import SSSPConnectionError, SSSPProtocolError
from sssp_sdk.models import ScanOutcome, SessionState

CLEAN = ["ACC 1", "DONE OK 0000 clean", ""]


@asynccontextmanager
async def fake_daemon(
    replies=(),
    *,
    greeting="OK SSSP/1.0",
    version_reply="ACC 5A3B/SSSP/1.0",
    bye_reply="BYE",
    hangup_after_replies=False,
    reset_after_replies=False,
):
    """An asyncio SSSP server; yields ``(address, seen)``."""
    seen: dict = {"requests": [], "payloads": [], "bye": False}

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        def send(*lines: str) -> None:
            writer.write(b"".join(line.encode() + b"\r\n" for line in lines))

        try:
            send(greeting)
            seen["version"] = await reader.readline()
            send(version_reply)
            while line := await reader.readline():
                if line == b"BYE\r\n":
                    seen["bye"] = True
                    send(bye_reply)
                    break
                seen["requests"].append(line)
                if line.startswith(b"SCANDATA "):
                    seen["payloads"].append(await reader.readexactly(int(line.split()[1])))
                    await reader.readline()
                send(*replies)
                await writer.drain()
                if reset_after_replies:
                    # Zero linger makes the close send RST instead of FIN.
                    sock = writer.get_extra_info("socket")
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
                    writer.transport.abort()
                    return
                if hangup_after_replies:
                    break
            await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield f"127.0.0.1:{port}", seen
    finally:
        server.close()
        await server.wait_closed()


class TestConnect:
    async def test_handshake_and_close(self):
        async with fake_daemon() as (address, seen):
            client = AsyncSSSPClient()
            await client.connect("tcp", address)
            assert client.state is SessionState.CONNECTED
            await client.close()
            assert client.state is SessionState.CLOSED
        assert seen["version"] == b"SSSP/1.0\r\n"
        assert seen["bye"] is True

    async def test_bad_greeting(self):
        async with fake_daemon(greeting="OK SSSP/2.0") as (address, _):
            client = AsyncSSSPClient()
            with pytest.raises(SSSPProtocolError, match="bad server greeting"):
                await client.connect("tcp", address)
            assert client.state is SessionState.CLOSED

    async def test_version_rejected(self):
        async with fake_daemon(version_reply="REJ 2") as (address, seen):
            client = AsyncSSSPClient()
            with pytest.raises(SSSPProtocolError, match="bad protocol version handshake"):
                await client.connect("tcp", address)
            assert client.state is SessionState.CLOSED
        assert seen["requests"] == []

    async def test_connection_refused(self, unix_socket_path: str):
        with pytest.raises(SSSPConnectionError, match=r"cannot open unix socket .*\(\d+\)"):
            await AsyncSSSPClient().connect("unix", unix_socket_path)

    async def test_not_connected(self):
        with pytest.raises(SSSPConnectionError, match="not connected"):
            await AsyncSSSPClient().scan_file("/tmp/x")

    async def test_close_without_connect(self):
        client = AsyncSSSPClient()
        await client.close()
        assert client.state is SessionState.DISCONNECTED

    async def test_unexpected_signoff_only_warns(self, caplog):
        async with fake_daemon(bye_reply="GOODBYE") as (address, seen):
            client = AsyncSSSPClient()
            await client.connect("tcp", address)
            with caplog.at_level(logging.WARNING, logger="sssp_sdk.async_client"):
                await client.close()
        assert seen["bye"] is True
        assert "expected signoff" in caplog.text
        assert client.state is SessionState.CLOSED


class TestScan:
    async def test_clean(self):
        async with fake_daemon(CLEAN) as (address, seen):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                result = await client.scan_file("/tmp/clean.txt")
        assert seen["requests"] == [b"SCANFILE %2Ftmp%2Fclean.txt\r\n"]
        assert result.outcome is ScanOutcome.CLEAN
        assert result.message == "0000 clean"

    async def test_virus_found(self):
        replies = ["ACC 1", "VIRUS EICAR-AV-Test /tmp/eicar.txt", "DONE OK 0203 virus found", ""]
        async with fake_daemon(replies) as (address, _):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                result = await client.scan_dir("/tmp", recursive=True)
                assert client.get_last_viruses() == {"/tmp/eicar.txt": "EICAR-AV-Test"}
                assert client.get_last_message() == "0203 virus found"
        assert result.outcome is ScanOutcome.INFECTED

    async def test_rejected(self):
        async with fake_daemon(["REJ too many requests"]) as (address, _):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                result = await client.scan_file("/tmp/clean.txt")
        assert result.outcome is ScanOutcome.ERROR
        assert result.viruses == {}

    async def test_stream_ends_without_done(self):
        async with fake_daemon(["ACC 1"], hangup_after_replies=True) as (address, _):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                result = await client.scan_file("/tmp/clean.txt")
        assert result.outcome is ScanOutcome.ERROR

    async def test_remote_scan_file(self, tmp_path):
        f = tmp_path / "ten.bin"
        f.write_bytes(b"0123456789")
        async with fake_daemon(CLEAN) as (address, seen):
            async with AsyncSSSPClient() as client:
                await client.connect("remotetcp", address)
                assert client.remote is True
                await client.scan_file(f)
        assert seen["requests"] == [b"SCANDATA 10\n"]
        assert seen["payloads"] == [b"0123456789"]

    async def test_scan_bytes(self, sample_bytes: bytes):
        async with fake_daemon(CLEAN) as (address, seen):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                result = await client.scan_bytes(sample_bytes)
        assert seen["payloads"] == [sample_bytes]
        assert result.outcome is ScanOutcome.CLEAN

    async def test_failed_local_read_clears_previous_findings(self, tmp_path):
        replies = ["ACC 1", "VIRUS EICAR-AV-Test stream", "DONE OK 0203 virus found", ""]
        async with fake_daemon(replies) as (address, seen):
            async with AsyncSSSPClient() as client:
                await client.connect("remotetcp", address)
                assert (await client.scan_bytes(b"x")).outcome is ScanOutcome.INFECTED
                with pytest.raises(FileNotFoundError):
                    await client.scan_file(tmp_path / "missing.bin")
                assert client.get_last_viruses() == {}
                assert client.get_last_message() is None
        assert seen["requests"] == [b"SCANDATA 1\n"]

    async def test_request_built_off_the_event_loop_thread(self, tmp_path, monkeypatch):
        f = tmp_path / "one.bin"
        f.write_bytes(b"1")
        threads = []
        build_request = sssp_sdk.async_client.build_request

        def recording_build_request(*args):
            threads.append(threading.get_ident())
            return build_request(*args)

        monkeypatch.setattr(sssp_sdk.async_client, "build_request", recording_build_request)
        async with fake_daemon(CLEAN) as (address, seen):
            async with AsyncSSSPClient() as client:
                await client.connect("remotetcp", address)
                await client.scan_file(f)
        assert seen["payloads"] == [b"1"]
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()


class TestConnectionFailure:
    async def test_reset_mid_scan_is_an_error_outcome(self, caplog):
        async with fake_daemon(["ACC 1"], reset_after_replies=True) as (address, _):
            async with AsyncSSSPClient() as client:
                await client.connect("tcp", address)
                with caplog.at_level(logging.WARNING, logger="sssp_sdk.async_client"):
                    result = await client.scan_file("/tmp/clean.txt")
        assert result.outcome is ScanOutcome.ERROR
        assert result.viruses == {}
        assert "SSSP connection failed mid-scan" in caplog.text
        assert client.state is SessionState.CLOSED
