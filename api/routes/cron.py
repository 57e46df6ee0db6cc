from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from api.db.models import CronJob, CronRun
from api.db.session import get_db
from api.schemas.cron import (
    CronJobBrief,
    CronJobOut,
    CronRunOut,
    RunCreate,
    RunCreated,
    SyncRequest,
    SyncResponse,
)
from common import config
from common.events import log_event
from services.sync.gateway import load_agent_map
from services.sync.reconciler import Reconciler
from services.sync.recorder import record_run
from services.sync.store import CronStore, RunRow, StoreError

router = APIRouter(prefix="/cron")


def get_store():
    store = CronStore.connect()
    try:
        yield store
    finally:
        store.close()


def get_agent_map() -> dict[str, str]:
    return load_agent_map(config.AGENT_JOB_MAP_PATH)


@router.post("/sync", response_model=SyncResponse)
def sync_jobs(
    body: SyncRequest,
    store: CronStore = Depends(get_store),
    agent_map: dict[str, str] = Depends(get_agent_map),
):
    if body.jobs is None:
        raise HTTPException(status_code=400, detail="jobs array required")

    result = Reconciler(store, agent_map).sync(body.jobs)
    return SyncResponse(
        success=True,
        jobs_updated=result.jobs_synced,
        runs_created=result.runs_created,
        skipped=result.skipped,
        errors=result.errors,
        synced=result.jobs_synced,
        created=result.jobs_created,
        updated=result.jobs_updated,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/sync")
def sync_status(
    db: Session = Depends(get_db),
    agent_map: dict[str, str] = Depends(get_agent_map),
):
    jobs = db.scalars(select(CronJob).order_by(CronJob.name)).all()
    return {
        "success": True,
        "agentJobMap": agent_map,
        "jobs": [CronJobBrief.model_validate(j).model_dump(mode="json") for j in jobs],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/jobs", response_model=list[CronJobOut])
def list_jobs(db: Session = Depends(get_db)):
    return db.scalars(select(CronJob).order_by(CronJob.name)).all()


@router.post("/jobs")
def upsert_jobs(
    body: SyncRequest,
    store: CronStore = Depends(get_store),
    agent_map: dict[str, str] = Depends(get_agent_map),
):
    if body.jobs is None:
        raise HTTPException(status_code=400, detail="jobs array is required")

    result = Reconciler(store, agent_map).upsert_definitions(body.jobs)
    return {
        "success": True,
        "synced": result.jobs_synced,
        "created": result.jobs_created,
        "updated": result.jobs_updated,
        "errors": result.errors,
    }


@router.get("/runs", response_model=list[CronRunOut])
def list_runs(
    job_id: str | None = Query(None, alias="jobId"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    stmt = (
        select(CronRun)
        .options(selectinload(CronRun.job))
        .order_by(CronRun.started_at.desc())
        .limit(limit)
    )
    if job_id:
        stmt = stmt.join(CronRun.job).where(CronJob.gateway_id == job_id)
    return db.scalars(stmt).all()


@router.post("/runs", response_model=RunCreated, status_code=201)
def create_run(body: RunCreate, store: CronStore = Depends(get_store)):
    run = RunRow(
        started_at=body.started_at,
        completed_at=body.completed_at,
        status=body.status.value,
        duration_ms=body.duration_ms,
        error_message=body.error_message,
        result_summary=body.result_summary,
    )

    try:
        found = store.find_job(body.job_id)
        if found:
            job_id, prior = found
        else:
            job_id, prior = store.create_placeholder_job(body.job_id, body.job_name), 0
            log_event("job_placeholder_created", gateway_id=body.job_id, job_id=str(job_id))

        recorded = record_run(store, job_id, run, prior)
    except StoreError as e:
        log_event("run_record_failed", gateway_id=body.job_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to create cron run")

    if recorded is None:
        raise HTTPException(status_code=409, detail="Run already recorded for this start time")

    run_id, consecutive = recorded
    log_event("run_recorded", gateway_id=body.job_id, run_id=str(run_id), status=run.status)
    return RunCreated(success=True, run_id=run_id, consecutive_errors=consecutive)
