import sys

import psycopg2

from common.config import database_url


def table_status(cur, limit=5) -> dict:
    cur.execute("SELECT COUNT(*) FROM cron_jobs")
    jobs_count = cur.fetchone()[0]

    cur.execute("SELECT name, enabled, schedule_kind, schedule_expr FROM cron_jobs ORDER BY name")
    jobs = [
        {"name": r[0], "enabled": r[1], "schedule_kind": r[2], "schedule_expr": r[3]}
        for r in cur.fetchall()
    ]

    cur.execute("SELECT COUNT(*) FROM cron_runs")
    runs_count = cur.fetchone()[0]

    cur.execute(
        """
        SELECT j.name, r.status, r.started_at
        FROM cron_runs r
        JOIN cron_jobs j ON j.id = r.job_id
        ORDER BY r.started_at DESC
        LIMIT %s
        """,
        (limit,),
    )
    latest = [{"name": r[0], "status": r[1], "started_at": r[2]} for r in cur.fetchall()]

    return {"cron_jobs": jobs_count, "jobs": jobs, "cron_runs": runs_count, "latest_runs": latest}


def main() -> int:
    try:
        with psycopg2.connect(database_url()) as conn:
            with conn.cursor() as cur:
                status = table_status(cur)
    except (RuntimeError, psycopg2.Error) as e:
        print(f"check failed: {e}", flush=True)
        return 1

    print(f"CRON_JOBS: {status['cron_jobs']} records")
    for j in status["jobs"]:
        print(f"  - {j['name']} (enabled: {j['enabled']}, {j['schedule_kind']} {j['schedule_expr']})")

    print(f"CRON_RUNS: {status['cron_runs']} records")
    for r in status["latest_runs"]:
        print(f"  - {r['name']}: {r['status']} at {r['started_at'].isoformat()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
