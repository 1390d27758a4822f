import logging

from app.services.job_store import JobStore
from app.services.pipeline import VideoPipeline
from app.services.progress import ProgressReporter
from app.services.state_machine import JobRecord
from app.workers.tasks import generate_video

logger = logging.getLogger(__name__)


def dispatch_generation(job: JobRecord, store: JobStore) -> None:
    """Queue video generation for a freshly created job."""
    try:
        generate_video.delay(job.id, job.external_ref)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Queue dispatch failed; fallback to inline pipeline: %s", exc)
        # Local fallback: run pipeline inline when queue infra is unavailable.
        pipeline = VideoPipeline(ProgressReporter(store))
        try:
            pipeline.run(job.id, job.external_ref)
        finally:
            pipeline.client.close()
