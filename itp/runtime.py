from __future__ import annotations

from dataclasses import dataclass, field, replace
from threading import Lock

from .events import utc_now


@dataclass
class CycleReport:
    outcome: str = "ok"  # ok|partial|no_healthy_target|resolve_failed|error
    healthy: list[str] = field(default_factory=list)
    desired: str | None = None
    matched: int = 0
    patched: int = 0
    unchanged: int = 0
    failed: int = 0
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None

    def finish(self, outcome: str | None = None) -> "CycleReport":
        if outcome is not None:
            self.outcome = outcome
        self.finished_at = utc_now()
        return self


class RuntimeState:
    """Loop status shared between the reconciler thread and the health server."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.started = False
        self.cycles = 0
        self.last_report: CycleReport | None = None

    def mark_started(self) -> None:
        with self.lock:
            self.started = True

    def mark_stopped(self) -> None:
        with self.lock:
            self.started = False

    def record(self, report: CycleReport) -> None:
        with self.lock:
            self.cycles += 1
            self.last_report = replace(report, healthy=list(report.healthy))

    def snapshot(self) -> tuple[bool, int, CycleReport | None]:
        with self.lock:
            return self.started, self.cycles, self.last_report
