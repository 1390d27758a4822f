class JobError(Exception):
    """Base class for errors surfaced by the job tracking core."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(JobError):
    """No job with the requested id exists (or it was purged)."""

    status_code = 404
    code = "job_not_found"


class InvalidTransitionError(JobError):
    """The caller attempted an illegal state change. Signals a worker bug."""

    status_code = 409
    code = "invalid_transition"


class ConflictError(JobError):
    """A concurrent mutation was serialized ahead of this one. Re-fetch and decide."""

    status_code = 409
    code = "conflict"


class JobFrozenError(InvalidTransitionError, ConflictError):
    """A terminal job was asked to change."""

    status_code = 409
    code = "job_frozen"


class StorageError(JobError):
    """The persistence layer is unavailable. Retry with backoff."""

    status_code = 503
    code = "storage_unavailable"


class InvalidRequestError(JobError):
    """The caller sent a value the job record cannot hold."""

    status_code = 400
    code = "invalid_request"


class VideoNotReadyError(JobError):
    """The job has no stored video yet."""

    status_code = 409
    code = "video_not_ready"
