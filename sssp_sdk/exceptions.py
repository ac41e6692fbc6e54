"""Exception hierarchy for the SSSP SDK."""

from __future__ import annotations


class SSSPError(Exception):
    """Base exception for all SSSP SDK errors."""


class SSSPConnectionError(SSSPError):
    """Raised when the SDK cannot open a socket to the SAVDI daemon.

    Also raised when a scan is requested on a client that holds no session.
    """


class SSSPProtocolError(SSSPError):
    """Raised when the daemon breaks the greeting / version handshake.

    The session is closed before this is raised.
    """


class SSSPIOError(SSSPError):
    """Raised when a read or write fails on an established session.

    Fatal during the handshake. During a scan it is absorbed into an
    ``ERROR`` outcome instead of being raised.
    """
