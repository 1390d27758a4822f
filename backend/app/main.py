from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from app.api.routes import router
from app.core.config import settings
from app.core.errors import JobError
from app.core.handlers import handle_job_error, handle_validation_error
from app.core.logging import setup_logging
from app.db.session import init_db
from app.services.job_store import JobStore, SqlJobStore, build_job_store


def create_app(job_store: JobStore | None = None) -> FastAPI:
    """Build the API around an injected job store (defaults to the configured backend)."""
    store = job_store or build_job_store()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(store, SqlJobStore):
            init_db()
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.job_store = store
    app.include_router(router, prefix=settings.api_prefix)
    app.add_exception_handler(JobError, handle_job_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore[arg-type]

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


setup_logging()
app = create_app()
