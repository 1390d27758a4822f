from app.core.config import settings
from app.services.job_store import SqlJobStore
from app.services.pipeline import VideoPipeline
from app.services.progress import ProgressReporter
from app.workers.celery_app import celery_app


@celery_app.task(
    name="pipeline.generate_video",
    soft_time_limit=settings.task_timeout_minutes * 60,
    time_limit=settings.task_timeout_minutes * 60 + 30,
)
def generate_video(job_id: str, external_ref: str) -> dict:
    pipeline = VideoPipeline(ProgressReporter(SqlJobStore()))
    try:
        job = pipeline.run(job_id, external_ref)
    finally:
        pipeline.client.close()
    return {"job_id": job.id, "status": job.status.value, "progress": job.progress}
