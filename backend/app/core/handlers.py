import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import JobError

logger = logging.getLogger(__name__)


async def handle_job_error(request: Request, exc: JobError) -> JSONResponse:
    # Client errors are expected traffic; only log what needs an operator.
    if exc.status_code >= 500:
        logger.error("%s %s failed [%s]: %s", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.detail}},
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Invalid request to %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "invalid_request", "message": "Invalid request"}},
    )
