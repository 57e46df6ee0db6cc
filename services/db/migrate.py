from pathlib import Path

import psycopg2

from common.config import database_url
from common.events import log_event


def repo_root() -> Path:
    # services/db/migrate.py -> repo root is 2 levels up from services/db
    return Path(__file__).resolve().parents[2]


def migrations_dir() -> Path:
    return repo_root() / "migrations"


def list_sql_migrations(dirpath: Path) -> list[Path]:
    return sorted([p for p in dirpath.glob("*.sql") if p.is_file()])


def apply_migrations(conn, dirpath: Path | None = None) -> list[str]:
    """Apply pending *.sql files in name order. Returns the names applied."""
    files = list_sql_migrations(dirpath or migrations_dir())

    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              filename TEXT PRIMARY KEY,
              applied_at TIMESTAMP NOT NULL DEFAULT NOW()
            );
            """
        )

        cur.execute("SELECT filename FROM schema_migrations;")
        applied = {r[0] for r in cur.fetchall()}

        applied_now = []
        for path in files:
            name = path.name
            if name in applied:
                continue

            sql = path.read_text(encoding="utf-8")
            log_event("migration_applying", filename=name)
            cur.execute(sql)
            cur.execute("INSERT INTO schema_migrations(filename) VALUES (%s)", (name,))
            applied_now.append(name)

    return applied_now


def main():
    mdir = migrations_dir()
    if not list_sql_migrations(mdir):
        log_event("migrations_missing", path=str(mdir))
        return

    with psycopg2.connect(database_url()) as conn:
        applied = apply_migrations(conn, mdir)

    log_event("migrations_done", applied=len(applied), filenames=applied)


if __name__ == "__main__":
    main()
