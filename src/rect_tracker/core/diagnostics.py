"""
Diagnostics sinks and pipeline statistics.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field

from .types import DiagnosticEvent

logger = logging.getLogger(__name__)


class LoggingDiagnosticsSink:
    """Forward diagnostic events to the logging module and count them per stage."""

    def __init__(self, level=logging.WARNING, log=None):
        self.level = level
        self.log = log or logger
        self.counts = Counter()
        self._lock = threading.Lock()

    def report(self, event: DiagnosticEvent) -> None:
        with self._lock:
            self.counts[event.stage] += 1
        ts = "n/a" if event.frame_timestamp is None else f"{event.frame_timestamp:.3f}"
        self.log.log(
            self.level,
            "[%s] %s (frame=%s, error=%s)%s",
            event.stage,
            event.message,
            ts,
            event.error_type or "-",
            f" {event.details}" if event.details else "",
        )


class MemoryDiagnosticsSink:
    """Keep every reported event in memory."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def report(self, event: DiagnosticEvent) -> None:
        with self._lock:
            self.events.append(event)

    def by_stage(self, stage):
        with self._lock:
            return [e for e in self.events if e.stage == stage]

    def clear(self):
        with self._lock:
            self.events.clear()


@dataclass
class PipelineStats:
    """Running counters for one pipeline session."""

    frames_processed: int = 0
    frames_dropped: int = 0
    detections: int = 0
    tracker_updates: int = 0
    refinements: int = 0
    failures: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict:
        return {
            "frames_processed": self.frames_processed,
            "frames_dropped": self.frames_dropped,
            "detections": self.detections,
            "tracker_updates": self.tracker_updates,
            "refinements": self.refinements,
            "failures": dict(self.failures),
        }
