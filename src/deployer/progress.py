"""Progress notifications emitted by the engine.

One event per state transition. Rendering is somebody else's job; the
default reporter just logs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class ProgressAction(str, Enum):
    """Transition names reported to the user."""

    READING = "Reading"
    CREATING = "Creating"
    CREATED = "Created"
    UPDATING = "Updating"
    UPDATED = "Updated"
    UNCHANGED = "Unchanged"
    WAITING = "Waiting"
    SKIPPED = "Skipped"
    DISPOSING = "Disposing"
    DISPOSED = "Disposed"
    FAILED = "Failed"
    CHECKING_PERMISSIONS = "Checking permissions"


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    action: ProgressAction
    label: str | None = None

    def __str__(self) -> str:
        if self.label:
            return f"{self.action.value} {self.kind}: {self.label}"
        return f"{self.action.value} {self.kind}"


class ProgressReporter(Protocol):
    def report(self, event: ProgressEvent) -> None: ...


class LoggingReporter:
    """Reports progress events through the standard logger."""

    def report(self, event: ProgressEvent) -> None:
        level = logging.WARNING if event.action == ProgressAction.FAILED else logging.INFO
        logger.log(
            level,
            str(event),
            extra={
                "resource_kind": event.kind,
                "action": event.action.value,
                "label": event.label,
            },
        )


class RecordingReporter:
    """Keeps every event in memory, e.g. for a summary table at the end."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def report(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def actions_for(self, kind: str) -> list[ProgressAction]:
        return [e.action for e in self.events if e.kind == kind]
