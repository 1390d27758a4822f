import logging

from app.services.job_store import JobStore
from app.services.state_machine import JobRecord, failure_event, progress_event, success_event

logger = logging.getLogger(__name__)


class ProgressReporter:
    """What a worker uses to publish state for the job it owns.

    All writes go through ``JobStore.update`` so they are validated and
    serialized against the latest committed record.
    """

    def __init__(self, store: JobStore):
        self.store = store

    def report_progress(self, job_id: str, percent: int) -> JobRecord:
        job = self.store.update(job_id, progress_event(percent))
        logger.debug("Job %s progress %d%%", job_id, job.progress)
        return job

    def report_success(self, job_id: str, result: str) -> JobRecord:
        job = self.store.update(job_id, success_event(result))
        logger.info("Job %s succeeded: %s", job_id, job.result)
        return job

    def report_failure(self, job_id: str, error_kind: str, message: str) -> JobRecord:
        job = self.store.update(job_id, failure_event(error_kind, message))
        logger.warning("Job %s failed at %d%% [%s]: %s", job_id, job.progress, error_kind, message)
        return job
