from __future__ import annotations

import logging
import time
from threading import Event, Thread
from typing import Any, Sequence

import httpx
from kubernetes import client

from .events import EventLog, log_event
from .k8s_ops import API_ERRORS, annotation, get_ingress, ingress_ref, list_ingresses, patch_annotation
from .prober import NoHealthyTarget, healthy_targets
from .runtime import CycleReport, RuntimeState
from .settings import ClassMatch, FixedTarget, Settings

logger = logging.getLogger(__name__)


class CycleDeadlineExceeded(TimeoutError):
    pass


def desired_value(healthy: Sequence[str]) -> str:
    return ",".join(healthy)


class Reconciler:
    """Probes the configured IPs on a fixed interval and keeps the target
    annotation of the selected Ingress objects equal to the healthy set."""

    def __init__(
        self,
        settings: Settings,
        api: client.NetworkingV1Api,
        runtime: RuntimeState | None = None,
        journal: EventLog | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.settings = settings
        self.api = api
        self.runtime = runtime or RuntimeState()
        self.journal = journal
        self.transport = transport
        self._stop = Event()
        self._thr: Thread | None = None

    # Loop control

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self.run, name="reconciler", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        """Stop scheduling cycles. A cycle already running is allowed to finish."""
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thr:
            self._thr.join(timeout)

    def run(self) -> None:
        """Run cycles until stop() is called: one immediately, then one per interval."""
        interval = self.settings.interval_s
        self.runtime.mark_started()
        self._event("INFO", "runner started", interval_s=interval)
        next_start = time.monotonic()
        try:
            while not self._stop.is_set():
                self._safe_cycle()
                next_start += interval
                now = time.monotonic()
                if next_start <= now:
                    # Cycle overran the interval; drop the ticks it covered.
                    next_start += (int((now - next_start) // interval) + 1) * interval
                if self._stop.wait(next_start - now):
                    break
        finally:
            self.runtime.mark_stopped()
            self._event("INFO", "runner stopped")

    def _safe_cycle(self) -> None:
        try:
            self.run_cycle()
        except Exception as e:
            self._event("ERROR", "reconcile cycle failed", exc=e)
            self.runtime.record(CycleReport().finish("error"))

    # One cycle

    def run_cycle(self) -> CycleReport:
        s = self.settings
        report = CycleReport()
        deadline = time.monotonic() + s.cycle_timeout_s

        try:
            healthy = healthy_targets(
                s.ips,
                scheme=s.http_scheme,
                path=s.http_path,
                host_header=s.host_header,
                timeout_s=s.timeout_s,
                verify_tls=not s.insecure_skip_verify,
                deadline=deadline,
                transport=self.transport,
            )
        except NoHealthyTarget as e:
            self._event("INFO", "no healthy IP; leaving annotations unchanged", exc=e)
            return self._finish(report, "no_healthy_target")

        desired = desired_value(healthy)
        report.healthy = healthy
        report.desired = desired

        try:
            candidates = self._resolve(deadline)
        except API_ERRORS as e:
            self._event("ERROR", "failed to resolve Ingresses", exc=e, selector=s.selector.describe())
            return self._finish(report, "resolve_failed")

        report.matched = len(candidates)
        for ing in candidates:
            self._apply(ing, desired, deadline, report)

        return self._finish(report, "partial" if report.failed else "ok")

    def _resolve(self, deadline: float) -> list[client.V1Ingress]:
        sel = self.settings.selector
        if isinstance(sel, FixedTarget):
            return [get_ingress(self.api, sel.namespace, sel.name, timeout_s=self._remaining(deadline))]
        if isinstance(sel, ClassMatch):
            items = list_ingresses(self.api, timeout_s=self._remaining(deadline))
            return [ing for ing in items if annotation(ing, sel.key) == sel.value]
        raise TypeError(f"unsupported selector: {sel!r}")

    def _apply(self, ing: client.V1Ingress, desired: str, deadline: float, report: CycleReport) -> None:
        key = self.settings.annotation_key
        ref = ingress_ref(ing)
        if annotation(ing, key) == desired:
            report.unchanged += 1
            self._event("DEBUG", "annotation up to date", ingress=str(ref), key=key)
            return
        try:
            patch_annotation(self.api, ing, key, desired, timeout_s=self._remaining(deadline))
        except API_ERRORS as e:
            report.failed += 1
            self._event("ERROR", "failed to patch Ingress annotation", exc=e, ingress=str(ref), key=key, value=desired)
            return
        report.patched += 1
        self._event("INFO", "updated annotation", ingress=str(ref), key=key, value=desired)

    @staticmethod
    def _remaining(deadline: float) -> float:
        left = deadline - time.monotonic()
        if left <= 0:
            raise CycleDeadlineExceeded("cycle deadline exceeded")
        return left

    def _finish(self, report: CycleReport, outcome: str) -> CycleReport:
        report.finish(outcome)
        self.runtime.record(report)
        return report

    def _event(self, level: str, message: str, exc: BaseException | None = None, **context: Any) -> None:
        log_event(logger, level, message, journal=self.journal, exc=exc, **context)
