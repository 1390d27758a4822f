"""Durable job records.

The store is the only component allowed to write job state. Callers hand it a
mutation (see ``app.services.state_machine``) and the store evaluates it
against the latest committed record, serialized per job id.
"""

import abc
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    InvalidRequestError,
    InvalidTransitionError,
    JobFrozenError,
    NotFoundError,
    StorageError,
)
from app.db.session import SessionLocal
from app.models import Job, JobStatus
from app.services.state_machine import (
    ALLOWED_TRANSITIONS,
    MAX_ERROR_KIND_LENGTH,
    MAX_EXTERNAL_REF_LENGTH,
    MAX_PROGRESS,
    MIN_PROGRESS,
    ErrorDetail,
    JobRecord,
    Mutation,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(abc.ABC):
    def __init__(self, clock: Clock | None = None):
        self._clock = clock or _utcnow

    @abc.abstractmethod
    def create(self, external_ref: str) -> JobRecord: ...

    @abc.abstractmethod
    def get(self, job_id: str) -> JobRecord: ...

    @abc.abstractmethod
    def update(self, job_id: str, mutation: Mutation) -> JobRecord: ...

    def _new_record(self, external_ref: str) -> JobRecord:
        if not external_ref or len(external_ref) > MAX_EXTERNAL_REF_LENGTH:
            raise InvalidRequestError(f"external_ref must be 1 to {MAX_EXTERNAL_REF_LENGTH} characters")
        now = self._clock()
        return JobRecord(
            id=str(uuid.uuid4()),
            external_ref=external_ref,
            status=JobStatus.pending,
            progress=0,
            created_at=now,
            updated_at=now,
        )

    def _check_commit(self, current: JobRecord, updated: JobRecord) -> None:
        """Reject a mutation result that would break the job invariants.

        Runs after the no-op check, so any write against a terminal job is
        refused here whatever the mutation did.
        """
        if current.is_terminal:
            raise JobFrozenError(f"job {current.id} is {current.status.value}; no further transitions are allowed")

        status = updated.status
        allowed = ALLOWED_TRANSITIONS[current.status]
        # pending -> succeeded is the collapsed pending -> running -> succeeded.
        if JobStatus.running in allowed:
            allowed = allowed | ALLOWED_TRANSITIONS[JobStatus.running]
        if status not in allowed:
            raise InvalidTransitionError(f"job {current.id} cannot move from {current.status.value} to {status.value}")

        progress = updated.progress
        if isinstance(progress, bool) or not isinstance(progress, int) or not MIN_PROGRESS <= progress <= MAX_PROGRESS:
            raise InvalidTransitionError(f"job {current.id} progress {progress!r} is out of range")
        if status is JobStatus.running and progress < current.progress:
            raise InvalidTransitionError(f"progress for job {current.id} cannot decrease from {current.progress}")
        if status is JobStatus.failed and progress != current.progress:
            raise InvalidTransitionError(f"progress for job {current.id} is frozen at {current.progress} on failure")
        if status is JobStatus.succeeded and progress != MAX_PROGRESS:
            raise InvalidTransitionError(f"a succeeded job must report {MAX_PROGRESS}% progress")

        if (status is JobStatus.succeeded) != bool(updated.result):
            raise InvalidTransitionError(f"job {current.id}: a result is required exactly when succeeded")
        error = updated.error_detail
        if (status is JobStatus.failed) != (error is not None):
            raise InvalidTransitionError(f"job {current.id}: an error detail is required exactly when failed")
        if error is not None and not 0 < len(error.kind) <= MAX_ERROR_KIND_LENGTH:
            raise InvalidTransitionError(f"error kind must be 1 to {MAX_ERROR_KIND_LENGTH} characters")

    def _stamp(self, current: JobRecord, updated: JobRecord) -> JobRecord:
        """Carry identity fields over and advance updated_at/version."""
        now = self._clock()
        if now <= current.updated_at:
            now = current.updated_at + timedelta(microseconds=1)
        return replace(
            updated,
            id=current.id,
            external_ref=current.external_ref,
            created_at=current.created_at,
            updated_at=now,
            version=current.version + 1,
        )


class InMemoryJobStore(JobStore):
    """Process-local store. Used by tests and single-process development."""

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._jobs: dict[str, JobRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def create(self, external_ref: str) -> JobRecord:
        job = self._new_record(external_ref)
        with self._registry_lock:
            self._locks[job.id] = threading.Lock()
            self._jobs[job.id] = job
        logger.info("Job %s created for %s", job.id, external_ref)
        return job

    def get(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"job {job_id} not found")
        return job

    def update(self, job_id: str, mutation: Mutation) -> JobRecord:
        lock = self._locks.get(job_id)
        if lock is None:
            raise NotFoundError(f"job {job_id} not found")
        with lock:
            current = self._jobs[job_id]
            updated = mutation(current)
            if updated is current:
                return current
            self._check_commit(current, updated)
            stamped = self._stamp(current, updated)
            self._jobs[job_id] = stamped
            return stamped


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: Job) -> JobRecord:
    error_detail = None
    if row.error_kind is not None:
        error_detail = ErrorDetail(kind=row.error_kind, message=row.error_message or "")
    return JobRecord(
        id=row.id,
        external_ref=row.external_ref,
        status=row.status,
        progress=row.progress,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        result=row.result,
        error_detail=error_detail,
        version=row.version,
    )


class SqlJobStore(JobStore):
    """SQLAlchemy-backed store shared by the API and Celery workers.

    Writes are guarded twice: the row is read ``FOR UPDATE`` (ignored by
    SQLite) and the write only lands if ``version`` is still the one that was
    read. A writer that loses the race re-reads and re-applies its mutation.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        max_retries: int | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(clock)
        self._session_factory = session_factory or SessionLocal
        self.max_retries = max(1, max_retries if max_retries is not None else settings.job_update_max_retries)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Job store unavailable: %s", exc)
            raise StorageError(f"job store unavailable: {exc}") from exc
        finally:
            db.close()

    def create(self, external_ref: str) -> JobRecord:
        job = self._new_record(external_ref)
        with self._session() as db:
            db.add(
                Job(
                    id=job.id,
                    external_ref=job.external_ref,
                    status=job.status,
                    progress=job.progress,
                    version=job.version,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                )
            )
            db.commit()
        logger.info("Job %s created for %s", job.id, external_ref)
        return job

    def get(self, job_id: str) -> JobRecord:
        with self._session() as db:
            row = db.get(Job, job_id)
            if row is None:
                raise NotFoundError(f"job {job_id} not found")
            return _to_record(row)

    def update(self, job_id: str, mutation: Mutation) -> JobRecord:
        for attempt in range(1, self.max_retries + 1):
            with self._session() as db:
                row = db.execute(select(Job).where(Job.id == job_id).with_for_update()).scalar_one_or_none()
                if row is None:
                    raise NotFoundError(f"job {job_id} not found")
                current = _to_record(row)
                updated = mutation(current)
                if updated is current:
                    return current

                self._check_commit(current, updated)
                stamped = self._stamp(current, updated)
                error = stamped.error_detail
                res = db.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.version == current.version)
                    .values(
                        status=stamped.status,
                        progress=stamped.progress,
                        result=stamped.result,
                        error_kind=error.kind if error else None,
                        error_message=error.message if error else None,
                        version=stamped.version,
                        updated_at=stamped.updated_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 1:
                    db.commit()
                    return stamped
                db.rollback()
            logger.info("Job %s changed during update (attempt %d/%d)", job_id, attempt, self.max_retries)
        raise ConflictError(f"job {job_id} kept changing; gave up after {self.max_retries} attempts")


def build_job_store(backend: str | None = None) -> JobStore:
    backend = (backend or settings.job_store_backend).lower()
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "sql":
        return SqlJobStore()
    raise ValueError(f"Unsupported job store backend: {backend}")
