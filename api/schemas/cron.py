import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from common.states import RunStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class SyncRequest(BaseModel):
    # Left optional so a missing list gets the 400 below, not a 422.
    jobs: list[dict[str, Any]] | None = None


class SyncResponse(CamelModel):
    success: bool
    jobs_updated: int = Field(serialization_alias="jobsUpdated")
    runs_created: int = Field(serialization_alias="runsCreated")
    skipped: int
    errors: int
    synced: int
    created: int
    updated: int
    timestamp: datetime


class CronJobOut(CamelModel):
    id: uuid.UUID
    gateway_id: str
    name: str
    enabled: bool
    schedule_kind: str
    schedule_expr: str
    timezone: str
    session_target: str
    agent_id: str | None = None
    payload: dict[str, Any]
    delivery: dict[str, Any] | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None
    last_duration_ms: int | None = None
    last_error: str | None = None
    consecutive_errors: int
    created_at: datetime
    updated_at: datetime


class CronJobBrief(CamelModel):
    id: uuid.UUID
    gateway_id: str
    name: str
    enabled: bool
    last_run_at: datetime | None = None


class CronRunOut(CamelModel):
    id: uuid.UUID
    job_id: uuid.UUID
    started_at: datetime
    completed_at: datetime | None = None
    status: str
    duration_ms: int | None = None
    error_message: str | None = None
    result_summary: str | None = None
    cron_job: CronJobBrief | None = Field(default=None, validation_alias="job")


class RunCreate(CamelModel):
    job_id: str = Field(..., min_length=1, alias="jobId")
    job_name: str = Field(..., min_length=1, alias="jobName")
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    status: RunStatus
    duration_ms: int | None = Field(None, alias="durationMs")
    error_message: str | None = Field(None, alias="errorMessage")
    result_summary: str | None = Field(None, alias="resultSummary")


class RunCreated(BaseModel):
    success: bool
    run_id: uuid.UUID | None = Field(None, serialization_alias="runId")
    consecutive_errors: int = Field(serialization_alias="consecutiveErrors")
