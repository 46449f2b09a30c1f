from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"


class ReadyResponse(BaseModel):
    ready: bool


class CycleModel(BaseModel):
    outcome: str = Field(..., description="ok|partial|no_healthy_target|resolve_failed|error")
    healthy: list[str] = Field(default_factory=list, description="Healthy IPs in configured order")
    desired: str | None = Field(None, description="Annotation value computed for the cycle")
    matched: int = 0
    patched: int = 0
    unchanged: int = 0
    failed: int = 0
    started_at: str
    finished_at: str | None = None


class StatusResponse(BaseModel):
    running: bool
    cycles: int
    last_cycle: CycleModel | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class EventModel(BaseModel):
    ts: str
    level: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
