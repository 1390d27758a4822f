from datetime import datetime

from pydantic import BaseModel, Field


class JobCreateIn(BaseModel):
    external_ref: str = Field(min_length=1, max_length=512)


class JobCreateOut(BaseModel):
    job_id: str


class ProgressIn(BaseModel):
    percent: int = Field(ge=0, le=100)


class SuccessIn(BaseModel):
    result: str = Field(min_length=1)


class FailureIn(BaseModel):
    error_kind: str = Field(min_length=1, max_length=64)
    message: str = ""


class ErrorDetailOut(BaseModel):
    kind: str
    message: str


class JobView(BaseModel):
    job_id: str
    external_ref: str
    status: str
    progress: int
    result: str | None = None
    error_detail: ErrorDetailOut | None = None
    created_at: datetime
    updated_at: datetime
