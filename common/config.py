import os
from pathlib import Path

from dotenv import load_dotenv

# Local overrides; real environment variables win.
load_dotenv(Path(__file__).resolve().parents[1] / ".env.local")


def env(key: str, default: str | None = None) -> str:
    v = os.getenv(key, default)
    if v is None:
        raise RuntimeError(f"Missing env var: {key}")
    return v


def database_url() -> str:
    """
    Read at call time, not import time, so tests and the API can import
    config without a database configured.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    return url


GATEWAY_CRON_PATH = env(
    "GATEWAY_CRON_PATH",
    str(Path.home() / ".openclaw" / "cron" / "jobs.json"),
)
AGENT_JOB_MAP_PATH = os.getenv("AGENT_JOB_MAP_PATH")

DEFAULT_TIMEZONE = env("DEFAULT_TIMEZONE", "America/Sao_Paulo")
RESULT_SUMMARY_MAX_CHARS = int(env("RESULT_SUMMARY_MAX_CHARS", "500"))

SYNC_INTERVAL_SECONDS = int(env("SYNC_INTERVAL_SECONDS", "0"))

METRICS_ENABLED = env("METRICS_ENABLED", "1") == "1"
METRICS_PORT = int(env("METRICS_PORT", "8000"))
