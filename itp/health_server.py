"""Liveness/readiness and status endpoints for the running controller.

Served by uvicorn in a background thread next to the reconciler loop.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict
from typing import Any

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse

from .api_models import CycleModel, EventModel, HealthResponse, ReadyResponse, StatusResponse
from .events import EventLog
from .runtime import RuntimeState

logger = logging.getLogger(__name__)


def create_app(runtime: RuntimeState, journal: EventLog, config: dict[str, Any] | None = None) -> FastAPI:
    app = FastAPI(title="Ingress Target Prober")

    @app.get("/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/readyz", response_model=ReadyResponse)
    def readyz():
        started, _, _ = runtime.snapshot()
        if not started:
            return JSONResponse(status_code=503, content=ReadyResponse(ready=False).model_dump())
        return ReadyResponse(ready=True)

    @app.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        started, cycles, report = runtime.snapshot()
        return StatusResponse(
            running=started,
            cycles=cycles,
            last_cycle=CycleModel(**asdict(report)) if report else None,
            config=dict(config or {}),
        )

    @app.get("/events", response_model=list[EventModel])
    def events(limit: int = Query(50, ge=1, le=1000)) -> list[EventModel]:
        return [EventModel(ts=e.ts, level=e.level, message=e.message, context=e.context) for e in journal.recent(limit)]

    return app


def parse_bind(bind: str) -> tuple[str, int]:
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"bind address must be host:port, got {bind!r}")
    return (host or "0.0.0.0"), int(port)


class HealthServer:
    """Runs the status app under uvicorn in a daemon thread."""

    def __init__(self, app: FastAPI, bind: str) -> None:
        self.app = app
        self.host, self.port = parse_bind(bind)
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def start(self, wait_s: float = 5.0) -> None:
        config = uvicorn.Config(app=self.app, host=self.host, port=self.port, log_level="warning", access_log=False)
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name="health-server", daemon=True)
        self._thread.start()

        start_wait = time.monotonic()
        while not self._server.started:
            if time.monotonic() - start_wait > wait_s or not self._thread.is_alive():
                logger.warning("health server did not report started", extra={"context": {"bind": f"{self.host}:{self.port}"}})
                return
            time.sleep(0.05)
        logger.info("health server listening", extra={"context": {"bind": f"{self.host}:{self.port}"}})

    def shutdown(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5.0)
