"""SSSP/1.0 request encoding and response parsing.

Everything here is free of I/O on the daemon socket, so both the synchronous
and the asyncio client drive the same code:

* :func:`build_request` turns a scan verb and a path into the bytes of one
  request message (without the trailing CRLF).
* :class:`ScanResponse` consumes the lines that follow a request and
  classifies the scan.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Union
from urllib.parse import quote

from sssp_sdk.models import ScanOutcome, ScanResult

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "SSSP/1.0"
GREETING = f"OK {PROTOCOL_VERSION}"
BYE = "BYE"

SCANFILE = "SCANFILE"
SCANDIR = "SCANDIR"
SCANDIRR = "SCANDIRR"
SCANDATA = "SCANDATA"

# DONE OK codes
CODE_CLEAN = "0000"
CODE_VIRUS = "0203"

PathLike = Union[str, os.PathLike]


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------


def quote_path(path: PathLike) -> str:
    """Percent-encode the filesystem bytes of *path*.

    Only unreserved characters are left as-is, so spaces, separators and
    non-ASCII bytes are all escaped and decode back to the exact path.
    """
    return quote(os.fsencode(path), safe="")


def iter_scan_files(path: PathLike, recursive: bool = False) -> Iterator[str]:
    """Yield the regular files under the directory *path*.

    With *recursive*, every subdirectory is walked first (depth-first, in
    name order), then the directory's own files in name order.

    Symlinked directories are followed; a symlink loop is not detected.
    """
    with os.scandir(path) as it:
        entries = sorted(it, key=lambda e: e.name)
    if recursive:
        for entry in entries:
            if entry.is_dir():
                yield from iter_scan_files(entry.path, recursive)
    for entry in entries:
        if entry.is_file():
            yield entry.path


def collect_payload(verb: str, path: PathLike) -> bytes:
    """Read the bytes a ``SCANDATA`` request must carry for *verb* on *path*."""
    if verb == SCANFILE:
        return Path(path).read_bytes()
    if verb in (SCANDIR, SCANDIRR):
        files = iter_scan_files(path, recursive=verb == SCANDIRR)
        return b"".join(Path(f).read_bytes() for f in files)
    raise ValueError(f"cannot build inline data for {verb!r}")


def encode_scandata(payload: bytes) -> bytes:
    """``SCANDATA <size>\\n<payload>``; *size* is exactly ``len(payload)``."""
    return f"{SCANDATA} {len(payload)}\n".encode("ascii") + payload


def build_request(verb: str, path: PathLike, remote: bool = False) -> bytes:
    """Build the request for scanning *path* with *verb*.

    Args:
        verb: ``SCANFILE``, ``SCANDIR`` or ``SCANDIRR``.
        path: File or directory to scan.
        remote: The daemon cannot read our filesystem; send the file
            contents inline as ``SCANDATA`` instead of the path.

    Raises:
        ValueError: If *verb* is not a path-based scan verb.
        OSError: If *remote* and a file cannot be read.
    """
    if verb not in (SCANFILE, SCANDIR, SCANDIRR):
        raise ValueError(f"unsupported scan verb {verb!r}")
    if remote:
        return encode_scandata(collect_payload(verb, path))
    return f"{verb} {quote_path(path)}".encode("ascii")


def describe_request(request: bytes) -> str:
    """Printable form of a request for protocol traces; inline data is elided."""
    head, sep, rest = request.partition(b"\n")
    text = head.decode("ascii", "backslashreplace")
    if sep:
        text += f" <{len(rest)} bytes>"
    return text


# ------------------------------------------------------------------
# Responses
# ------------------------------------------------------------------


class EventKind(Enum):
    END = "end"  # end of stream
    BLANK = "blank"
    ACCEPTED = "ACC"
    REJECTED = "REJ"
    PROGRESS = "progress"  # EVENT / TYPE / FILE
    ITEM = "item"  # per-item OK / FAIL
    VIRUS = "VIRUS"
    DONE = "DONE"
    UNKNOWN = "unknown"


_TOKENS = {
    "ACC": EventKind.ACCEPTED,
    "REJ": EventKind.REJECTED,
    "EVENT": EventKind.PROGRESS,
    "TYPE": EventKind.PROGRESS,
    "FILE": EventKind.PROGRESS,
    "OK": EventKind.ITEM,
    "FAIL": EventKind.ITEM,
    "VIRUS": EventKind.VIRUS,
    "DONE": EventKind.DONE,
}


@dataclass(frozen=True, slots=True)
class ResponseEvent:
    """One classified response line.

    ``fields`` holds the payload: ``(name, identifier)`` for ``VIRUS``,
    ``(status, code, text)`` for ``DONE`` and ``(text,)`` otherwise.
    Missing fields are empty strings.
    """

    kind: EventKind
    line: str | None = None
    fields: tuple[str, ...] = ()


def _split(text: str, count: int) -> tuple[str, ...]:
    parts = text.split(" ", count - 1)
    return tuple(parts + [""] * (count - len(parts)))


def parse_event(line: str | None) -> ResponseEvent:
    """Classify a single response line (``None`` is end-of-stream)."""
    if line is None:
        return ResponseEvent(EventKind.END)
    if line == "":
        return ResponseEvent(EventKind.BLANK, line)

    token, _, extra = line.partition(" ")
    kind = _TOKENS.get(token, EventKind.UNKNOWN)
    if kind is EventKind.VIRUS:
        return ResponseEvent(kind, line, _split(extra, 2))
    if kind is EventKind.DONE:
        return ResponseEvent(kind, line, _split(extra, 3))
    return ResponseEvent(kind, line, (extra,))


class ScanResponse:
    """Accumulates the response stream of one scan request.

    Feed it every line read after the request until :meth:`feed` returns
    ``False``, then call :meth:`result`.  The outcome starts as ``ERROR``
    and only a ``DONE OK`` with a known code changes it.
    """

    def __init__(self) -> None:
        self.outcome = ScanOutcome.ERROR
        self.viruses: dict[str, str] = {}
        self.message: str | None = None
        self.done = False

    def feed(self, line: str | None) -> bool:
        """Consume *line*; return whether more lines should be read."""
        event = parse_event(line)
        kind = event.kind

        if kind is EventKind.END:
            return False
        if kind is EventKind.BLANK:
            # The blank line after DONE ends the response; earlier ones are keep-alives.
            return not self.done
        if kind is EventKind.REJECTED:
            self.message = event.fields[0]
            logger.warning("SSSP request rejected: %s", event.fields[0])
            return False
        if kind is EventKind.VIRUS:
            name, identifier = event.fields
            self.viruses[identifier] = name
            logger.info("found virus %s in %s", name, identifier)
        elif kind is EventKind.DONE:
            self._finish(*event.fields)
        elif kind is EventKind.UNKNOWN:
            logger.debug("unexpected SSSP response: %r", line)
        return True

    def _finish(self, status: str, code: str, text: str) -> None:
        if status == "OK" and code == CODE_CLEAN:
            self.outcome = ScanOutcome.CLEAN
        elif status == "OK" and code == CODE_VIRUS:
            self.outcome = ScanOutcome.INFECTED
        else:
            self.outcome = ScanOutcome.ERROR
            logger.warning("SSSP scan ended %s - %s (%s)", status, text, code)
        self.message = f"{code} {text}"
        self.done = True

    def result(self) -> ScanResult:
        if self.outcome is ScanOutcome.INFECTED:
            return ScanResult(self.outcome, dict(self.viruses), self.message)
        if self.viruses:
            logger.warning(
                "ignoring %d virus report(s) from a scan that ended %s",
                len(self.viruses),
                self.outcome.name,
            )
        return ScanResult(self.outcome, {}, self.message)
