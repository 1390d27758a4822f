from app.schemas.job import ErrorDetailOut, JobView
from app.services.job_store import JobStore
from app.services.state_machine import JobRecord


def to_view(job: JobRecord) -> JobView:
    error = None
    if job.error_detail is not None:
        error = ErrorDetailOut(kind=job.error_detail.kind, message=job.error_detail.message)
    return JobView(
        job_id=job.id,
        external_ref=job.external_ref,
        status=job.status.value,
        progress=job.progress,
        result=job.result,
        error_detail=error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


class StatusQueryService:
    """Read-only projection for polling clients. Never waits on running work."""

    def __init__(self, store: JobStore):
        self.store = store

    def query_status(self, job_id: str) -> JobView:
        return to_view(self.store.get(job_id))
