from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.deps import Dispatcher, get_dispatcher, get_job_store, get_reporter, get_status_service
from app.core.errors import VideoNotReadyError
from app.models import JobStatus
from app.schemas.job import FailureIn, JobCreateIn, JobCreateOut, JobView, ProgressIn, SuccessIn
from app.services.job_store import JobStore
from app.services.progress import ProgressReporter
from app.services.status import StatusQueryService, to_view
from app.services.storage import VIDEO_CONTENT_TYPE, read_file_bytes

router = APIRouter()


@router.post("/jobs", response_model=JobCreateOut, status_code=201)
def create_job(
    payload: JobCreateIn,
    store: JobStore = Depends(get_job_store),
    dispatch: Dispatcher = Depends(get_dispatcher),
):
    job = store.create(payload.external_ref)
    dispatch(job, store)
    return JobCreateOut(job_id=job.id)


@router.get("/jobs/{job_id}", response_model=JobView)
def get_job(job_id: str, status: StatusQueryService = Depends(get_status_service)):
    return status.query_status(job_id)


# Worker-facing endpoints, for workers that cannot reach the job store directly.


@router.post("/jobs/{job_id}/progress", response_model=JobView)
def report_progress(job_id: str, payload: ProgressIn, reporter: ProgressReporter = Depends(get_reporter)):
    return to_view(reporter.report_progress(job_id, payload.percent))


@router.post("/jobs/{job_id}/success", response_model=JobView)
def report_success(job_id: str, payload: SuccessIn, reporter: ProgressReporter = Depends(get_reporter)):
    return to_view(reporter.report_success(job_id, payload.result))


@router.post("/jobs/{job_id}/failure", response_model=JobView)
def report_failure(job_id: str, payload: FailureIn, reporter: ProgressReporter = Depends(get_reporter)):
    return to_view(reporter.report_failure(job_id, payload.error_kind, payload.message))


@router.get("/jobs/{job_id}/video")
def get_video(job_id: str, store: JobStore = Depends(get_job_store)):
    job = store.get(job_id)
    if job.status is not JobStatus.succeeded or not job.result:
        raise VideoNotReadyError(f"job {job_id} is {job.status.value}; no video yet")

    data = read_file_bytes(job.result)

    return Response(
        content=data,
        media_type=VIDEO_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{job_id}.mp4"'},
    )
