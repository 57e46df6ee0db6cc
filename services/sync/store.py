import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import psycopg2
from psycopg2.extras import Json, register_uuid

from common.config import database_url

register_uuid()


class StoreError(RuntimeError):
    """A cron_jobs / cron_runs statement failed. Recoverable per job."""


@dataclass
class JobRow:
    gateway_id: str
    name: str
    enabled: bool
    schedule_kind: str
    schedule_expr: str
    timezone: str
    session_target: str
    payload: dict[str, Any]
    delivery: dict[str, Any] | None = None
    agent_id: str | None = None
    last_run_at: datetime | None = None
    last_status: str | None = None
    last_duration_ms: int | None = None
    last_error: str | None = None
    consecutive_errors: int = 0


@dataclass
class UpsertedJob:
    id: uuid.UUID
    inserted: bool
    # consecutive_errors as stored before the upsert ran (0 for new rows)
    prior_errors: int


@dataclass
class RunRow:
    started_at: datetime
    status: str
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    result_summary: str | None = None


def get_conn(url: str | None = None):
    return psycopg2.connect(url or database_url())


class CronStore:
    """
    Thin client over the cron_jobs / cron_runs tables.

    Runs in autocommit mode: each statement is its own transaction, so a
    failed write for one job leaves the connection usable for the next.
    """

    def __init__(self, conn):
        self.conn = conn
        self.conn.autocommit = True

    @classmethod
    def connect(cls, url: str | None = None) -> "CronStore":
        return cls(get_conn(url))

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _fetchone(self, sql, params):
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone() if cur.description else None
        except psycopg2.Error as e:
            raise StoreError(str(e).strip() or e.__class__.__name__) from e

    # --------------------------------------------------------
    # Jobs
    # --------------------------------------------------------

    def upsert_job(self, job: JobRow) -> UpsertedJob:
        """
        Insert or fully replace the job keyed by gateway_id.

        id and created_at survive the replace; updated_at is refreshed.
        """
        row = self._fetchone(
            """
            WITH prior AS (
                SELECT consecutive_errors
                FROM cron_jobs
                WHERE gateway_id = %(gateway_id)s
            )
            INSERT INTO cron_jobs (
                gateway_id, name, enabled, schedule_kind, schedule_expr,
                timezone, session_target, agent_id, payload, delivery,
                last_run_at, last_status, last_duration_ms, last_error,
                consecutive_errors, updated_at
            )
            VALUES (
                %(gateway_id)s, %(name)s, %(enabled)s, %(schedule_kind)s, %(schedule_expr)s,
                %(timezone)s, %(session_target)s, %(agent_id)s, %(payload)s, %(delivery)s,
                %(last_run_at)s, %(last_status)s, %(last_duration_ms)s, %(last_error)s,
                %(consecutive_errors)s, NOW()
            )
            ON CONFLICT (gateway_id) DO UPDATE
            SET name = EXCLUDED.name,
                enabled = EXCLUDED.enabled,
                schedule_kind = EXCLUDED.schedule_kind,
                schedule_expr = EXCLUDED.schedule_expr,
                timezone = EXCLUDED.timezone,
                session_target = EXCLUDED.session_target,
                agent_id = EXCLUDED.agent_id,
                payload = EXCLUDED.payload,
                delivery = EXCLUDED.delivery,
                last_run_at = EXCLUDED.last_run_at,
                last_status = EXCLUDED.last_status,
                last_duration_ms = EXCLUDED.last_duration_ms,
                last_error = EXCLUDED.last_error,
                consecutive_errors = EXCLUDED.consecutive_errors,
                updated_at = NOW()
            RETURNING id, (xmax = 0) AS inserted, (SELECT consecutive_errors FROM prior)
            """,
            {
                "gateway_id": job.gateway_id,
                "name": job.name,
                "enabled": job.enabled,
                "schedule_kind": job.schedule_kind,
                "schedule_expr": job.schedule_expr,
                "timezone": job.timezone,
                "session_target": job.session_target,
                "agent_id": job.agent_id,
                "payload": Json(job.payload),
                "delivery": Json(job.delivery) if job.delivery is not None else None,
                "last_run_at": job.last_run_at,
                "last_status": job.last_status,
                "last_duration_ms": job.last_duration_ms,
                "last_error": job.last_error,
                "consecutive_errors": job.consecutive_errors,
            },
        )
        if not row:
            raise StoreError(f"upsert returned no row for {job.gateway_id}")
        return UpsertedJob(id=row[0], inserted=bool(row[1]), prior_errors=int(row[2] or 0))

    def find_job(self, gateway_id: str) -> tuple[uuid.UUID, int] | None:
        """(id, consecutive_errors) for a gateway id, or None."""
        row = self._fetchone(
            "SELECT id, consecutive_errors FROM cron_jobs WHERE gateway_id = %s",
            (gateway_id,),
        )
        if not row:
            return None
        return row[0], int(row[1])

    def create_placeholder_job(self, gateway_id: str, name: str) -> uuid.UUID:
        """
        Minimal job row for runs reported before the first sync.
        Schedule fields are overwritten by the next sync of this id.
        """
        row = self._fetchone(
            """
            INSERT INTO cron_jobs (gateway_id, name, schedule_kind, schedule_expr, payload)
            VALUES (%s, %s, 'cron', '* * * * *', '{}'::jsonb)
            ON CONFLICT (gateway_id) DO UPDATE SET gateway_id = EXCLUDED.gateway_id
            RETURNING id
            """,
            (gateway_id, name),
        )
        return row[0]

    def update_job_summary(self, job_id: uuid.UUID, run: RunRow, consecutive_errors: int):
        self._fetchone(
            """
            UPDATE cron_jobs
            SET last_run_at = %s,
                last_status = %s,
                last_duration_ms = %s,
                last_error = %s,
                consecutive_errors = %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (
                run.started_at,
                run.status,
                run.duration_ms,
                run.error_message,
                consecutive_errors,
                job_id,
            ),
        )

    # --------------------------------------------------------
    # Runs
    # --------------------------------------------------------

    def run_exists(self, job_id: uuid.UUID, started_at: datetime) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM cron_runs WHERE job_id = %s AND started_at = %s",
            (job_id, started_at),
        )
        return row is not None

    def insert_run(self, job_id: uuid.UUID, run: RunRow) -> uuid.UUID | None:
        """Returns the new run id, or None if (job_id, started_at) already exists."""
        row = self._fetchone(
            """
            INSERT INTO cron_runs (
                job_id, started_at, completed_at, status,
                duration_ms, error_message, result_summary
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (job_id, started_at) DO NOTHING
            RETURNING id
            """,
            (
                job_id,
                run.started_at,
                run.completed_at,
                run.status,
                run.duration_ms,
                run.error_message,
                run.result_summary,
            ),
        )
        return row[0] if row else None
