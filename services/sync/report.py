from dataclasses import dataclass

from common.states import JobOutcome


@dataclass
class SyncResult:
    jobs_synced: int = 0
    jobs_created: int = 0
    jobs_updated: int = 0
    runs_created: int = 0
    skipped: int = 0
    errors: int = 0

    def job_synced(self, inserted: bool):
        self.jobs_synced += 1
        if inserted:
            self.jobs_created += 1
        else:
            self.jobs_updated += 1

    def add(self, outcome: JobOutcome) -> JobOutcome:
        if outcome is JobOutcome.CREATED:
            self.runs_created += 1
        elif outcome is JobOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1
        return outcome

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> dict:
        return {
            # every job row written this run, new or existing
            "jobsUpdated": self.jobs_synced,
            "runsCreated": self.runs_created,
            "skipped": self.skipped,
            "errors": self.errors,
            "synced": self.jobs_synced,
            "created": self.jobs_created,
            "updated": self.jobs_updated,
        }
