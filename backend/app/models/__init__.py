from app.models.entities import Job, JobStatus

__all__ = [
    "Job",
    "JobStatus",
]
