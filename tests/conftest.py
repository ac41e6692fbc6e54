"""Shared test fixtures."""

from __future__ import annotations

import socket

import pytest


@pytest.fixture()
def sample_bytes() -> bytes:
    return b"Hello, SAVDI!"


@pytest.fixture()
def eicar_bytes() -> bytes:
    """EICAR anti-malware test string (safe; every AV recognises it)."""
    return b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"


@pytest.fixture()
def unix_socket_path(tmp_path_factory) -> str:
    if not hasattr(socket, "AF_UNIX"):
        pytest.skip("Unix domain sockets not available.")
    # Short directory keeps the path under the sun_path limit.
    return str(tmp_path_factory.mktemp("s") / "sssp.sock")
