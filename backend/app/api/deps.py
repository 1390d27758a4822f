from typing import Callable

from fastapi import Depends, Request

from app.services.dispatch import dispatch_generation
from app.services.job_store import JobStore
from app.services.progress import ProgressReporter
from app.services.state_machine import JobRecord
from app.services.status import StatusQueryService

Dispatcher = Callable[[JobRecord, JobStore], None]


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_reporter(store: JobStore = Depends(get_job_store)) -> ProgressReporter:
    return ProgressReporter(store)


def get_status_service(store: JobStore = Depends(get_job_store)) -> StatusQueryService:
    return StatusQueryService(store)


def get_dispatcher() -> Dispatcher:
    return dispatch_generation
