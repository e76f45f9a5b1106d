from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from elementhooks.logging.logger import get_logger


class Diagnostics(Protocol):
    def record(self, event: str, **details: Any) -> None: ...


class LoggingDiagnostics:
    """Forwards diagnostic events to the package logger at debug level."""

    def __init__(self, name: str = "diagnostics") -> None:
        self.logger = get_logger(name)

    def record(self, event: str, **details: Any) -> None:
        self.logger.debug("%s %s", event, details)


@dataclass(slots=True)
class DiagnosticEvent:
    event: str
    details: dict[str, Any]
    timestamp: float = field(default_factory=time.time)


class RecordingDiagnostics:
    """Keeps the last events in memory for diagnostic panels."""

    def __init__(self, limit: int = 200) -> None:
        self.limit = limit
        self.events: list[DiagnosticEvent] = []

    def record(self, event: str, **details: Any) -> None:
        self.events.append(DiagnosticEvent(event=event, details=details))
        if len(self.events) > self.limit:
            self.events = self.events[-self.limit :]

    def named(self, event: str) -> list[DiagnosticEvent]:
        return [item for item in self.events if item.event == event]
