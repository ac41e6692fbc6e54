"""Environment-driven connection settings."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SOCKET = "/var/run/savdi/sssp.sock"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SSSPSettings:
    """Where and how to reach the SAVDI daemon.

    Attributes:
        conntype: ``"unix"``, ``"tcp"`` or ``"remotetcp"``.  ``remotetcp``
            means the daemon cannot see our filesystem, so file contents are
            sent inline with ``SCANDATA``.  Any other value is treated as TCP.
        address: Unix socket path, or ``host:port``.
        debug_protocol: Trace every protocol line at DEBUG level.
    """

    conntype: str = "unix"
    address: str = DEFAULT_SOCKET
    debug_protocol: bool = False

    @property
    def remote(self) -> bool:
        return self.conntype == "remotetcp"

    @staticmethod
    def from_env() -> SSSPSettings:
        conntype = os.getenv("SSSP_CONNTYPE", "unix").strip().lower() or "unix"
        address = os.getenv("SSSP_ADDRESS", DEFAULT_SOCKET).strip() or DEFAULT_SOCKET
        debug_protocol = os.getenv("SSSP_DEBUG_PROTOCOL", "").strip().lower() in _TRUTHY
        return SSSPSettings(conntype=conntype, address=address, debug_protocol=debug_protocol)
