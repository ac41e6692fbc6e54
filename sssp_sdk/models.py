"""Data models for SSSP SDK responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ScanOutcome(str, Enum):
    """Classified outcome of a single scan request."""

    CLEAN = "OK"
    INFECTED = "INFECTED"
    ERROR = "ERROR"


class SessionState(str, Enum):
    """Lifecycle of a client session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Result of a file, directory or data scan.

    Attributes:
        outcome: ``CLEAN``, ``INFECTED`` or ``ERROR``.
        viruses: Mapping of file identifier to virus name.  Only populated
            when *outcome* is ``INFECTED``.
        message: ``"<code> <text>"`` taken from the daemon's ``DONE`` line,
            or ``None`` when no ``DONE`` arrived.
    """

    outcome: ScanOutcome
    viruses: dict[str, str] = field(default_factory=dict)
    message: str | None = None

    @property
    def infected(self) -> bool:
        return self.outcome is ScanOutcome.INFECTED
