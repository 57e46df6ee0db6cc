import uuid

from common.config import RESULT_SUMMARY_MAX_CHARS
from common.states import RunStatus
from services.sync.store import CronStore, RunRow


def truncate_summary(text: str | None, limit: int = RESULT_SUMMARY_MAX_CHARS) -> str | None:
    if text is None:
        return None
    return text[:limit]


def next_consecutive_errors(status: str, prior: int) -> int:
    return prior + 1 if status == RunStatus.ERROR.value else 0


def record_run(
    store: CronStore, job_id: uuid.UUID, run: RunRow, prior_errors: int
) -> tuple[uuid.UUID, int] | None:
    """
    Insert the run, then move the job summary onto it.

    Returns (run id, new consecutive_errors), or None when a run for
    (job_id, started_at) already existed and nothing was written.

    The two writes are separate statements: if the summary update fails the
    run row stays, and the next sync of the job corrects the summary.
    """
    run.result_summary = truncate_summary(run.result_summary)

    run_id = store.insert_run(job_id, run)
    if run_id is None:
        return None

    consecutive = next_consecutive_errors(run.status, prior_errors)
    store.update_job_summary(job_id, run, consecutive)
    return run_id, consecutive
