import argparse
import sys
import time
from datetime import timedelta

from psycopg2 import OperationalError
from prometheus_client import Counter, start_http_server
from pydantic import ValidationError

from common import config
from common.events import log_event
from common.states import JobOutcome, map_status
from services.sync.gateway import (
    GatewayJob,
    SnapshotError,
    load_agent_map,
    load_snapshot,
    ms_to_datetime,
)
from services.sync.recorder import record_run
from services.sync.report import SyncResult
from services.sync.store import CronStore, JobRow, RunRow, StoreError


# ============================================================
# Metrics
# ============================================================

jobs_upserted = Counter("cronsync_jobs_upserted_total", "Cron job rows upserted")
runs_created = Counter("cronsync_runs_created_total", "Cron run rows created")
runs_skipped = Counter("cronsync_runs_skipped_total", "Jobs with no new run to record")
sync_errors = Counter("cronsync_sync_errors_total", "Per-job sync failures")


# ============================================================
# Reconciler
# ============================================================

class Reconciler:
    """
    Copies Gateway job state into cron_jobs / cron_runs.

    Jobs are processed one at a time, in input order. Any per-job failure is
    logged and counted, never raised, so the rest of the batch still runs.
    """

    def __init__(
        self,
        store: CronStore | None,
        agent_map: dict[str, str] | None = None,
        default_timezone: str = config.DEFAULT_TIMEZONE,
        dry_run: bool = False,
    ):
        if store is None and not dry_run:
            raise ValueError("store is required unless dry_run is set")
        self.store = store
        self.agent_map = agent_map or {}
        self.default_timezone = default_timezone
        self.dry_run = dry_run

    def sync(self, jobs) -> SyncResult:
        jobs = list(jobs)
        result = SyncResult()
        log_event("sync_started", jobs=len(jobs), dry_run=self.dry_run)

        for raw in jobs:
            self.sync_job(raw, result)

        log_event("sync_finished", **result.to_dict())
        return result

    def upsert_definitions(self, jobs) -> SyncResult:
        """Write job rows only, no runs. Each job is either synced or an error."""
        jobs = list(jobs)
        result = SyncResult()
        log_event("definitions_sync_started", jobs=len(jobs))

        for raw in jobs:
            job = self.parse_job(raw, result)
            if job is None:
                continue
            try:
                row = self.job_row(job)
            except (ValueError, OverflowError, OSError) as e:
                self._invalid(job.id, e, result)
                continue
            try:
                upserted = self.store.upsert_job(row)
            except StoreError as e:
                log_event("job_upsert_failed", gateway_id=job.id, name=job.name, error=str(e))
                sync_errors.inc()
                result.add(JobOutcome.ERROR)
                continue
            result.job_synced(upserted.inserted)
            jobs_upserted.inc()
            log_event("job_upserted", gateway_id=job.id, job_id=str(upserted.id), inserted=upserted.inserted)

        log_event("definitions_sync_finished", **result.to_dict())
        return result

    def job_row(self, job: GatewayJob) -> JobRow:
        state = job.state
        return JobRow(
            gateway_id=job.id,
            name=job.name,
            enabled=job.enabled,
            schedule_kind=job.schedule.kind,
            schedule_expr=job.schedule.expression(),
            timezone=job.schedule.tz or self.default_timezone,
            session_target=job.session_target,
            agent_id=self.agent_map.get(job.name),
            payload=job.payload,
            delivery=job.delivery,
            last_run_at=ms_to_datetime(state.last_run_at_ms) if state.last_run_at_ms else None,
            last_status=map_status(state.last_status).value if state.last_run_at_ms else None,
            last_duration_ms=state.last_duration_ms,
            last_error=state.last_error or None,
            consecutive_errors=state.consecutive_errors or 0,
        )

    def run_row(self, job: GatewayJob) -> RunRow:
        state = job.state
        started_at = ms_to_datetime(state.last_run_at_ms)
        return RunRow(
            started_at=started_at,
            completed_at=started_at + timedelta(milliseconds=state.last_duration_ms or 0),
            status=map_status(state.last_status).value,
            duration_ms=state.last_duration_ms,
            error_message=state.last_error or None,
        )

    def parse_job(self, raw, result: SyncResult) -> GatewayJob | None:
        try:
            return raw if isinstance(raw, GatewayJob) else GatewayJob.model_validate(raw)
        except ValidationError as e:
            gateway_id = raw.get("id") if isinstance(raw, dict) else None
            self._invalid(gateway_id, e, result)
            return None

    def _invalid(self, gateway_id, error, result: SyncResult) -> JobOutcome:
        log_event("job_invalid", gateway_id=gateway_id, error=str(error))
        sync_errors.inc()
        return result.add(JobOutcome.ERROR)

    def sync_job(self, raw, result: SyncResult) -> JobOutcome | None:
        job = self.parse_job(raw, result)
        if job is None:
            return JobOutcome.ERROR

        has_run = bool(job.state.last_run_at_ms)

        # Timestamps outside datetime's range fail here, before any write.
        try:
            row = self.job_row(job)
            run = self.run_row(job) if has_run else None
        except (ValueError, OverflowError, OSError) as e:
            return self._invalid(job.id, e, result)

        if self.dry_run:
            if not has_run:
                log_event("job_no_runs", gateway_id=job.id, name=job.name)
                return result.add(JobOutcome.SKIPPED)
            log_event(
                "dry_run_job",
                gateway_id=job.id,
                name=job.name,
                started_at=run.started_at.isoformat(),
                status=run.status,
                duration_ms=run.duration_ms or 0,
                error=run.error_message,
            )
            return None

        try:
            upserted = self.store.upsert_job(row)
        except StoreError as e:
            log_event("job_upsert_failed", gateway_id=job.id, name=job.name, error=str(e))
            sync_errors.inc()
            return result.add(JobOutcome.ERROR)

        result.job_synced(upserted.inserted)
        jobs_upserted.inc()
        log_event(
            "job_upserted",
            gateway_id=job.id,
            job_id=str(upserted.id),
            name=job.name,
            inserted=upserted.inserted,
        )

        if not has_run:
            log_event("job_no_runs", gateway_id=job.id, name=job.name)
            runs_skipped.inc()
            return result.add(JobOutcome.SKIPPED)

        try:
            exists = self.store.run_exists(upserted.id, run.started_at)
        except StoreError as e:
            # Unknown state: skip rather than risk a duplicate run.
            log_event("run_check_failed", gateway_id=job.id, error=str(e))
            runs_skipped.inc()
            return result.add(JobOutcome.SKIPPED)

        if exists:
            log_event("run_exists", gateway_id=job.id, started_at=run.started_at.isoformat())
            runs_skipped.inc()
            return result.add(JobOutcome.SKIPPED)

        try:
            recorded = record_run(self.store, upserted.id, run, upserted.prior_errors)
        except StoreError as e:
            log_event("run_record_failed", gateway_id=job.id, error=str(e))
            sync_errors.inc()
            return result.add(JobOutcome.ERROR)

        if recorded is None:
            # Lost a race with another sync inserting the same run.
            log_event("run_exists", gateway_id=job.id, started_at=run.started_at.isoformat())
            runs_skipped.inc()
            return result.add(JobOutcome.SKIPPED)

        run_id, consecutive = recorded
        log_event(
            "run_recorded",
            gateway_id=job.id,
            run_id=str(run_id),
            started_at=run.started_at.isoformat(),
            status=run.status,
            duration_ms=run.duration_ms,
            consecutive_errors=consecutive,
        )
        runs_created.inc()
        return result.add(JobOutcome.CREATED)


# ============================================================
# Entry point
# ============================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync Gateway cron state into Postgres")
    parser.add_argument("--dry-run", action="store_true", help="log what would be synced, write nothing")
    parser.add_argument("--path", default=config.GATEWAY_CRON_PATH, help="Gateway jobs.json")
    parser.add_argument(
        "--interval",
        type=int,
        default=config.SYNC_INTERVAL_SECONDS,
        help="seconds between syncs; 0 runs once",
    )
    return parser.parse_args(argv)


def run_once(args, database_url: str, agent_map: dict[str, str]) -> SyncResult:
    snapshot = load_snapshot(args.path)
    log_event("snapshot_loaded", path=str(args.path), version=snapshot.version, jobs=len(snapshot.jobs))

    if args.dry_run:
        return Reconciler(None, agent_map, dry_run=True).sync(snapshot.jobs)

    with CronStore.connect(database_url) as store:
        return Reconciler(store, agent_map).sync(snapshot.jobs)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        database_url = config.database_url()
        agent_map = load_agent_map(config.AGENT_JOB_MAP_PATH)
    except RuntimeError as e:
        log_event("sync_fatal", error=str(e))
        return 1

    if not args.interval:
        try:
            result = run_once(args, database_url, agent_map)
        except (SnapshotError, OperationalError) as e:
            log_event("sync_fatal", error=str(e))
            return 1
        log_event("sync_complete", ok=result.ok)
        return 0

    if config.METRICS_ENABLED:
        start_http_server(config.METRICS_PORT)

    while True:
        try:
            run_once(args, database_url, agent_map)
        except SnapshotError as e:
            log_event("sync_cycle_failed", error=str(e))
        except OperationalError as e:
            # DB down / transient network failure
            log_event("sync_cycle_failed", error=str(e))
            time.sleep(2)

        time.sleep(args.interval)


if __name__ == "__main__":
    sys.exit(main())
