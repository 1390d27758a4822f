import logging

from celery.exceptions import SoftTimeLimitExceeded

from app.core.errors import JobError, JobFrozenError, StorageError
from app.services.generation import GenerationClient, GenerationError
from app.services.progress import ProgressReporter
from app.services.state_machine import JobRecord
from app.services.storage import delete_file, save_video

logger = logging.getLogger(__name__)

# Progress reported once each stage has returned.
STAGE_PROGRESS = {
    "fetch_paper": 10,
    "write_script": 35,
    "synthesize_audio": 60,
    "render_video": 85,
}


class PipelineError(Exception):
    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail


class VideoPipeline:
    """Drives one job from claim to a terminal state.

    Every failure, whatever its source, ends in exactly one ``report_failure``.
    Errors from the job store itself are re-raised: the job cannot be updated,
    so the caller (Celery) has to deal with them.
    """

    def __init__(self, reporter: ProgressReporter, client: GenerationClient | None = None):
        self.reporter = reporter
        self.client = client or GenerationClient()

    def _advance(self, job: JobRecord, stage: str) -> JobRecord:
        # A redelivered task may find the job further along than this stage.
        return self.reporter.report_progress(job.id, max(STAGE_PROGRESS[stage], job.progress))

    def _discard(self, key: str) -> None:
        try:
            delete_file(key)
        except StorageError as exc:
            logger.warning("Could not delete orphaned video %s: %s", key, exc.detail)

    def run(self, job_id: str, external_ref: str) -> JobRecord:
        job = self.reporter.store.get(job_id)
        if job.is_terminal:
            logger.info("Job %s already %s; skipping", job_id, job.status.value)
            return job

        try:
            job = self.reporter.report_progress(job_id, job.progress)

            paper_text = self.client.fetch_paper(external_ref)
            job = self._advance(job, "fetch_paper")

            script = self.client.write_script(paper_text)
            if not script.strip():
                raise PipelineError("SCRIPT_FAILED", "script generation returned no text")
            job = self._advance(job, "write_script")

            audio = self.client.synthesize_audio(script)
            job = self._advance(job, "synthesize_audio")

            video = self.client.render_video(script, audio)
            job = self._advance(job, "render_video")

            try:
                key = save_video(job_id, video)
            except StorageError as exc:
                raise PipelineError("STORAGE_ERROR", exc.detail) from exc
            try:
                return self.reporter.report_success(job_id, key)
            except JobFrozenError:
                # Finished elsewhere while rendering; the upload is orphaned.
                self._discard(key)
                raise
        except GenerationError as exc:
            return self.reporter.report_failure(job_id, exc.kind, exc.detail)
        except PipelineError as exc:
            return self.reporter.report_failure(job_id, exc.code, exc.detail)
        except SoftTimeLimitExceeded:
            return self.reporter.report_failure(job_id, "TIMEOUT", "video generation exceeded its time limit")
        except JobError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error while processing job %s", job_id)
            return self.reporter.report_failure(job_id, "INTERNAL_ERROR", f"{type(exc).__name__}: {exc}")
