"""
Gateway cron storage shapes.

The Gateway keeps its jobs in a JSON file ({"version": 1, "jobs": [...]})
with camelCase keys. payload and delivery are opaque here: they are copied
to the database verbatim.
"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator


class SnapshotError(RuntimeError):
    """Gateway snapshot missing, unreadable, or without a jobs list."""


class GatewaySchedule(BaseModel):
    kind: Literal["cron", "every", "at"] = "cron"
    expr: str | None = None
    every_ms: int | None = Field(None, alias="everyMs")
    at_ms: int | None = Field(None, alias="atMs")
    tz: str | None = None

    model_config = {"populate_by_name": True}

    def expression(self) -> str:
        if self.expr:
            return self.expr
        if self.every_ms:
            return str(self.every_ms)
        if self.at_ms:
            return str(self.at_ms)
        return ""


class GatewayJobState(BaseModel):
    last_run_at_ms: int | None = Field(None, alias="lastRunAtMs")
    last_status: str | None = Field(None, alias="lastStatus")
    last_duration_ms: int | None = Field(None, alias="lastDurationMs")
    last_error: str | None = Field(None, alias="lastError")
    consecutive_errors: int | None = Field(None, alias="consecutiveErrors")
    next_run_at_ms: int | None = Field(None, alias="nextRunAtMs")
    running_at_ms: int | None = Field(None, alias="runningAtMs")

    model_config = {"populate_by_name": True}


class GatewayJob(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    enabled: bool = True
    schedule: GatewaySchedule = Field(default_factory=lambda: GatewaySchedule(expr="* * * * *"))
    session_target: str = Field("isolated", alias="sessionTarget")
    payload: dict[str, Any] = Field(default_factory=dict)
    delivery: dict[str, Any] | None = None
    state: GatewayJobState = Field(default_factory=GatewayJobState)

    model_config = {"populate_by_name": True}

    # The Gateway writes null for blocks it has not filled in yet.
    @field_validator("enabled", "schedule", "session_target", "payload", "state", mode="before")
    @classmethod
    def _null_is_default(cls, value, info):
        if value is not None:
            return value
        return {
            "enabled": True,
            "schedule": {"kind": "cron", "expr": "* * * * *"},
            "session_target": "isolated",
            "payload": {},
            "state": {},
        }[info.field_name]


class GatewaySnapshot(BaseModel):
    version: int = 1
    # Validated one job at a time by the reconciler so a malformed entry
    # only fails itself.
    jobs: list[dict[str, Any]]


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def load_snapshot(path) -> GatewaySnapshot:
    path = Path(path)
    if not path.is_file():
        raise SnapshotError(f"Gateway cron storage not found: {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Gateway cron storage unreadable: {e}") from e

    try:
        return GatewaySnapshot.model_validate(data)
    except ValidationError as e:
        raise SnapshotError(f"Gateway cron storage has no jobs list: {path}") from e


def load_agent_map(path) -> dict[str, str]:
    """Job name -> agent id, from a flat JSON object. No path means no mapping."""
    if not path:
        return {}

    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RuntimeError(f"agent map unreadable: {path}: {e}") from e

    if not isinstance(data, dict):
        raise RuntimeError(f"agent map must be a JSON object: {path}")
    return {str(k): str(v) for k, v in data.items()}
