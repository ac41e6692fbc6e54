"""SSSP SDK — Python client for the Sophos Simple Scanning Protocol (SAVDI)."""

from sssp_sdk.async_client import AsyncSSSPClient
from sssp_sdk.client import SSSPClient
from sssp_sdk.exceptions import (
    SSSPConnectionError,
    SSSPError,
    SSSPIOError,
    SSSPProtocolError,
)
from sssp_sdk.models import ScanOutcome, ScanResult, SessionState
from sssp_sdk.settings import SSSPSettings

__all__ = [
    "SSSPClient",
    "AsyncSSSPClient",
    "SSSPSettings",
    "ScanOutcome",
    "ScanResult",
    "SessionState",
    "SSSPError",
    "SSSPConnectionError",
    "SSSPProtocolError",
    "SSSPIOError",
]
