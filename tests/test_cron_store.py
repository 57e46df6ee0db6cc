from datetime import datetime, timedelta, timezone

import pytest

from services.db.migrate import apply_migrations
from services.sync.reconciler import Reconciler
from services.sync.store import CronStore, JobRow, RunRow, StoreError

STARTED = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def _job(**overrides):
    fields = dict(
        gateway_id="J1",
        name="Pulse Heartbeat",
        enabled=True,
        schedule_kind="cron",
        schedule_expr="*/30 * * * *",
        timezone="UTC",
        session_target="isolated",
        payload={"kind": "agentTurn", "message": "check in"},
    )
    fields.update(overrides)
    return JobRow(**fields)


def _count(conn, table):
    with conn.cursor() as cur:
        cur.execute(f"SELECT COUNT(*) FROM {table}")
        return cur.fetchone()[0]


def test_upsert_is_idempotent(db_conn):
    store = CronStore(db_conn)

    first = store.upsert_job(_job())
    with db_conn.cursor() as cur:
        cur.execute("SELECT updated_at FROM cron_jobs WHERE gateway_id='J1'")
        first_updated = cur.fetchone()[0]

    second = store.upsert_job(_job())

    assert first.inserted is True
    assert second.inserted is False
    assert second.id == first.id
    assert _count(db_conn, "cron_jobs") == 1

    with db_conn.cursor() as cur:
        cur.execute("SELECT updated_at, payload FROM cron_jobs WHERE gateway_id='J1'")
        updated_at, payload = cur.fetchone()
    assert updated_at >= first_updated
    assert payload == {"kind": "agentTurn", "message": "check in"}


def test_upsert_replaces_fields_and_reports_prior_errors(db_conn):
    store = CronStore(db_conn)
    store.upsert_job(_job(consecutive_errors=2, delivery={"mode": "announce"}))

    again = store.upsert_job(_job(name="Renamed", consecutive_errors=0, delivery=None))

    assert again.prior_errors == 2
    with db_conn.cursor() as cur:
        cur.execute("SELECT name, delivery, consecutive_errors FROM cron_jobs WHERE id=%s", (again.id,))
        assert cur.fetchone() == ("Renamed", None, 0)


def test_insert_run_dedups_on_start_time(db_conn):
    store = CronStore(db_conn)
    job = store.upsert_job(_job())
    run = RunRow(started_at=STARTED, status="ok", duration_ms=500)

    assert store.run_exists(job.id, STARTED) is False
    assert store.insert_run(job.id, run) is not None
    assert store.insert_run(job.id, run) is None
    assert store.run_exists(job.id, STARTED) is True
    assert store.run_exists(job.id, STARTED + timedelta(milliseconds=1)) is False
    assert _count(db_conn, "cron_runs") == 1


def test_bad_write_raises_store_error_and_connection_survives(db_conn):
    store = CronStore(db_conn)

    with pytest.raises(StoreError):
        store.upsert_job(_job(schedule_kind="hourly"))

    assert store.upsert_job(_job()).inserted is True


def test_reconciler_end_to_end(db_conn, make_job):
    store = CronStore(db_conn)
    batch = [make_job("J1", lastRunAtMs=1700000000000, lastStatus="ok", lastDurationMs=500)]

    first = Reconciler(store).sync(batch)
    second = Reconciler(store).sync(batch)

    assert (first.jobs_synced, first.runs_created, first.skipped, first.errors) == (1, 1, 0, 0)
    assert (second.jobs_synced, second.runs_created, second.skipped, second.errors) == (1, 0, 1, 0)

    with db_conn.cursor() as cur:
        cur.execute("SELECT last_status, last_run_at FROM cron_jobs WHERE gateway_id='J1'")
        assert cur.fetchone() == ("ok", STARTED)
        cur.execute("SELECT status, duration_ms FROM cron_runs")
        assert cur.fetchall() == [("ok", 500)]


def test_consecutive_errors_tracked_in_db(db_conn, make_job):
    store = CronStore(db_conn)
    reconciler = Reconciler(store)

    for i in range(3):
        reconciler.sync([make_job("J1", lastRunAtMs=1700000000000 + i * 60000, lastStatus="error")])

    with db_conn.cursor() as cur:
        cur.execute("SELECT consecutive_errors FROM cron_jobs WHERE gateway_id='J1'")
        assert cur.fetchone()[0] == 3

    reconciler.sync([make_job("J1", lastRunAtMs=1700000000000 + 3 * 60000, lastStatus="ok")])

    with db_conn.cursor() as cur:
        cur.execute("SELECT consecutive_errors FROM cron_jobs WHERE gateway_id='J1'")
        assert cur.fetchone()[0] == 0


def test_migrations_apply_once(db_conn):
    assert apply_migrations(db_conn) == []


def test_table_status_reports_counts(db_conn, make_job):
    from services.db.check_tables import table_status

    Reconciler(CronStore(db_conn)).sync(
        [make_job("J1", lastRunAtMs=1700000000000, lastStatus="ok"), make_job("J2")]
    )

    with db_conn.cursor() as cur:
        status = table_status(cur)

    assert status["cron_jobs"] == 2
    assert status["cron_runs"] == 1
    assert status["latest_runs"][0]["status"] == "ok"
