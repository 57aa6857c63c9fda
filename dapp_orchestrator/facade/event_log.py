"""
Append-only event log consumed by a presentation layer.

Each append is a single list push of one frozen entry; entries() returns a
tuple snapshot, so readers always see a stable prefix. clear() swaps in a new
list instead of truncating, so snapshots already handed out stay intact.
Entries are mirrored to structlog so a headless run leaves the same trail in
the process logs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from dapp_orchestrator.dapp_logging import get_logger

logger = get_logger(__name__)


class LogStatus(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    status: LogStatus
    method: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    def __str__(self) -> str:
        return f"[{self.status.value}] {self.method}: {self.message}"


class EventLog:
    def __init__(self) -> None:
        self._entries: list[LogEntry] = []

    def append(self, entry: LogEntry) -> LogEntry:
        self._entries.append(entry)
        logger.info("log_entry", status=entry.status.value, method=entry.method, entry_message=entry.message)
        return entry

    def info(self, method: str, message: str) -> LogEntry:
        return self.append(LogEntry(LogStatus.INFO, method, message))

    def success(self, method: str, message: str) -> LogEntry:
        return self.append(LogEntry(LogStatus.SUCCESS, method, message))

    def warning(self, method: str, message: str) -> LogEntry:
        return self.append(LogEntry(LogStatus.WARNING, method, message))

    def error(self, method: str, message: str) -> LogEntry:
        return self.append(LogEntry(LogStatus.ERROR, method, message))

    def entries(self) -> tuple[LogEntry, ...]:
        return tuple(self._entries)

    def for_method(self, method: str) -> list[LogEntry]:
        return [e for e in self._entries if e.method == method]

    def clear(self) -> None:
        """
        Start a new, empty log (the presentation's clear-logs action).

        Entries are never removed in place: the old list is swapped out, so a
        snapshot taken before the clear keeps every entry it held.
        """
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
