from enum import Enum


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"


class JobOutcome(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    ERROR = "error"


_GATEWAY_STATUS = {
    "ok": RunStatus.OK,
    "error": RunStatus.ERROR,
    "running": RunStatus.RUNNING,
    "timeout": RunStatus.TIMEOUT,
}


def map_status(status: str | None) -> RunStatus:
    """Gateway status -> cron_runs status. Unknown or missing is pending."""
    return _GATEWAY_STATUS.get(status, RunStatus.PENDING)
