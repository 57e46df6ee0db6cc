import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest
import psycopg2


# Ensure repo root is importable so `services.*` works
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from services.sync.store import StoreError, UpsertedJob  # noqa: E402


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL is not set; export DATABASE_URL to run DB-backed tests.")

    # If DB isn't reachable, skip instead of failing the whole suite.
    try:
        conn = psycopg2.connect(url)
        conn.close()
    except Exception as e:
        pytest.skip(f"Postgres not reachable at DATABASE_URL: {e}")

    return url


@pytest.fixture
def db_conn(database_url):
    """Migrated database with empty cron tables."""
    from services.db.migrate import apply_migrations

    with psycopg2.connect(database_url) as conn:
        apply_migrations(conn)

    conn = psycopg2.connect(database_url)
    conn.autocommit = True
    with conn.cursor() as cur:
        cur.execute("TRUNCATE TABLE cron_runs, cron_jobs CASCADE")
    try:
        yield conn
    finally:
        conn.close()


class FakeCronStore:
    """
    In-memory stand-in for CronStore with the same semantics:
    upsert by gateway_id, unique (job_id, started_at) runs.
    Failure switches simulate store errors per gateway id.
    """

    def __init__(self):
        self.jobs = {}
        self.runs = []
        self.fail_upsert = set()
        self.fail_run_check = set()
        self.fail_insert = set()
        self.fail_summary = set()
        self.closed = False

    def _gateway_id(self, job_id):
        for gateway_id, row in self.jobs.items():
            if row["id"] == job_id:
                return gateway_id
        return None

    def upsert_job(self, job):
        if job.gateway_id in self.fail_upsert:
            raise StoreError(f"simulated upsert failure for {job.gateway_id}")

        now = datetime.now(timezone.utc)
        existing = self.jobs.get(job.gateway_id)
        row = dict(vars(job))
        row["updated_at"] = now
        if existing:
            row["id"] = existing["id"]
            row["created_at"] = existing["created_at"]
            prior = existing["consecutive_errors"]
        else:
            row["id"] = uuid.uuid4()
            row["created_at"] = now
            prior = 0
        self.jobs[job.gateway_id] = row
        return UpsertedJob(id=row["id"], inserted=existing is None, prior_errors=prior)

    def find_job(self, gateway_id):
        row = self.jobs.get(gateway_id)
        return (row["id"], row["consecutive_errors"]) if row else None

    def create_placeholder_job(self, gateway_id, name):
        if gateway_id not in self.jobs:
            self.jobs[gateway_id] = {
                "id": uuid.uuid4(),
                "gateway_id": gateway_id,
                "name": name,
                "consecutive_errors": 0,
                "created_at": datetime.now(timezone.utc),
            }
        return self.jobs[gateway_id]["id"]

    def run_exists(self, job_id, started_at):
        if self._gateway_id(job_id) in self.fail_run_check:
            raise StoreError("simulated run check failure")
        return any(r["job_id"] == job_id and r["started_at"] == started_at for r in self.runs)

    def insert_run(self, job_id, run):
        if self._gateway_id(job_id) in self.fail_insert:
            raise StoreError("simulated run insert failure")
        if any(r["job_id"] == job_id and r["started_at"] == run.started_at for r in self.runs):
            return None
        run_id = uuid.uuid4()
        self.runs.append({"id": run_id, "job_id": job_id, **vars(run)})
        return run_id

    def update_job_summary(self, job_id, run, consecutive_errors):
        gateway_id = self._gateway_id(job_id)
        if gateway_id in self.fail_summary:
            raise StoreError("simulated summary update failure")
        self.jobs[gateway_id].update(
            last_run_at=run.started_at,
            last_status=run.status,
            last_duration_ms=run.duration_ms,
            last_error=run.error_message,
            consecutive_errors=consecutive_errors,
            updated_at=datetime.now(timezone.utc),
        )

    def runs_for(self, gateway_id):
        job_id = self.jobs[gateway_id]["id"]
        return [r for r in self.runs if r["job_id"] == job_id]

    def close(self):
        self.closed = True


@pytest.fixture
def store():
    return FakeCronStore()


def gateway_job(job_id="J1", name=None, **state):
    """Gateway jobs.json entry; keyword args become the state block."""
    return {
        "id": job_id,
        "name": name or f"{job_id} Heartbeat",
        "enabled": True,
        "schedule": {"kind": "cron", "expr": "*/30 * * * *", "tz": "UTC"},
        "sessionTarget": "isolated",
        "payload": {"kind": "agentTurn", "message": "check in"},
        "state": state,
    }


@pytest.fixture
def make_job():
    return gateway_job
