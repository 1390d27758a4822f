"""Job status transitions.

Every function here is pure: it takes the latest committed ``JobRecord`` and
returns the record that should be committed next. Returning the *same* object
means the event was an idempotent retry and nothing must be written. Stamping
``updated_at``/``version`` is left to the store.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable

from app.core.errors import InvalidTransitionError, JobFrozenError
from app.models import JobStatus

MIN_PROGRESS = 0
MAX_PROGRESS = 100

# Column widths of the jobs table.
MAX_EXTERNAL_REF_LENGTH = 512
MAX_ERROR_KIND_LENGTH = 64

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.running, JobStatus.failed}),
    JobStatus.running: frozenset({JobStatus.running, JobStatus.succeeded, JobStatus.failed}),
    JobStatus.succeeded: frozenset(),
    JobStatus.failed: frozenset(),
}


@dataclass(frozen=True)
class ErrorDetail:
    kind: str
    message: str


@dataclass(frozen=True)
class JobRecord:
    id: str
    external_ref: str
    status: JobStatus
    progress: int
    created_at: datetime
    updated_at: datetime
    result: str | None = None
    error_detail: ErrorDetail | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


Mutation = Callable[[JobRecord], JobRecord]


def _ensure_open(job: JobRecord) -> None:
    if job.is_terminal:
        raise JobFrozenError(f"job {job.id} is {job.status.value}; no further transitions are allowed")


def _check_edge(job: JobRecord, target: JobStatus) -> None:
    _ensure_open(job)
    if target not in ALLOWED_TRANSITIONS[job.status]:
        raise InvalidTransitionError(f"job {job.id} cannot move from {job.status.value} to {target.value}")


def _validate_percent(percent: int) -> None:
    # bool is an int subclass; True would otherwise read as 1%.
    if isinstance(percent, bool) or not isinstance(percent, int):
        raise InvalidTransitionError(f"progress must be an integer, got {percent!r}")
    if not MIN_PROGRESS <= percent <= MAX_PROGRESS:
        raise InvalidTransitionError(f"progress must be within [{MIN_PROGRESS}, {MAX_PROGRESS}], got {percent}")


def apply_progress(job: JobRecord, percent: int) -> JobRecord:
    """Record a progress report. The first report claims a pending job."""
    _ensure_open(job)
    _validate_percent(percent)
    _check_edge(job, JobStatus.running)
    if job.status is JobStatus.running and percent < job.progress:
        raise InvalidTransitionError(f"progress for job {job.id} cannot decrease from {job.progress} to {percent}")
    return replace(job, status=JobStatus.running, progress=percent)


def apply_success(job: JobRecord, result: str) -> JobRecord:
    if job.status is JobStatus.succeeded and job.result == result:
        return job
    _ensure_open(job)
    if not result:
        raise InvalidTransitionError("a succeeded job needs a non-empty result reference")
    if job.status is JobStatus.pending:
        # pending -> running -> succeeded in one commit.
        job = replace(job, status=JobStatus.running)
    _check_edge(job, JobStatus.succeeded)
    return replace(job, status=JobStatus.succeeded, progress=MAX_PROGRESS, result=result)


def apply_failure(job: JobRecord, error_kind: str, message: str) -> JobRecord:
    detail = ErrorDetail(kind=error_kind, message=message)
    if job.status is JobStatus.failed and job.error_detail == detail:
        return job
    _ensure_open(job)
    if not error_kind:
        raise InvalidTransitionError("a failed job needs an error kind")
    if len(error_kind) > MAX_ERROR_KIND_LENGTH:
        raise InvalidTransitionError(f"error kind is longer than {MAX_ERROR_KIND_LENGTH} characters")
    _check_edge(job, JobStatus.failed)
    return replace(job, status=JobStatus.failed, error_detail=detail)


def progress_event(percent: int) -> Mutation:
    return lambda job: apply_progress(job, percent)


def success_event(result: str) -> Mutation:
    return lambda job: apply_success(job, result)


def failure_event(error_kind: str, message: str) -> Mutation:
    return lambda job: apply_failure(job, error_kind, message)
