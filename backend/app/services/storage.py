"""Storage for rendered video artifacts.

Only the rendered file lives here; job state lives in the job store. Every
backend failure surfaces as ``StorageError``.
"""

import io
import logging
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage
from google.cloud.exceptions import NotFound

from app.core.config import settings
from app.core.errors import StorageError

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"


def video_key(job_id: str) -> str:
    return f"videos/{job_id}.mp4"


def _backend() -> str:
    backend = settings.storage_backend.lower()
    if backend not in {"local", "s3", "minio", "gcs"}:
        raise StorageError(f"Unsupported storage backend: {settings.storage_backend}")
    return backend


def _local_path(key: str) -> Path:
    base = Path(settings.local_storage_dir).resolve()
    target = (base / key).resolve()
    if base not in target.parents:
        raise StorageError(f"Key escapes storage root: {key}")
    return target


def _s3_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
    )


def _gcs_bucket() -> storage.Bucket:
    if not settings.gcs_bucket:
        raise StorageError("GCS bucket is not configured")
    bucket = storage.Client().bucket(settings.gcs_bucket)
    try:
        bucket.reload()
    except NotFound as exc:
        raise StorageError(f"GCS bucket {settings.gcs_bucket} not found") from exc
    return bucket


def upload_fileobj(fileobj: io.BytesIO, key: str, content_type: str = VIDEO_CONTENT_TYPE) -> str:
    backend = _backend()
    fileobj.seek(0)
    try:
        if backend == "local":
            target = _local_path(key)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(fileobj.read())
        elif backend == "gcs":
            _gcs_bucket().blob(key).upload_from_file(fileobj, content_type=content_type)
        else:
            client = _s3_client()
            try:
                client.head_bucket(Bucket=settings.s3_bucket)
            except ClientError:
                client.create_bucket(Bucket=settings.s3_bucket)
            client.upload_fileobj(fileobj, settings.s3_bucket, key, ExtraArgs={"ContentType": content_type})
    except (OSError, BotoCoreError, ClientError, GoogleAPIError) as exc:
        raise StorageError(f"Failed to store {key}: {exc}") from exc
    logger.info("Stored artifact %s on %s", key, backend)
    return key


def read_file_bytes(key: str) -> bytes:
    backend = _backend()
    try:
        if backend == "local":
            target = _local_path(key)
            if not target.exists():
                raise StorageError(f"Local object not found: {key}")
            return target.read_bytes()
        if backend == "gcs":
            return _gcs_bucket().blob(key).download_as_bytes()
        obj = _s3_client().get_object(Bucket=settings.s3_bucket, Key=key)
        return obj["Body"].read()
    except (OSError, BotoCoreError, ClientError, GoogleAPIError) as exc:
        raise StorageError(f"Failed to read {key}: {exc}") from exc


def delete_file(key: str) -> None:
    backend = _backend()
    try:
        if backend == "local":
            target = _local_path(key)
            if target.exists():
                target.unlink()
        elif backend == "gcs":
            _gcs_bucket().blob(key).delete()
        else:
            _s3_client().delete_object(Bucket=settings.s3_bucket, Key=key)
    except (OSError, BotoCoreError, ClientError, GoogleAPIError) as exc:
        raise StorageError(f"Failed to delete {key}: {exc}") from exc
    logger.info("Deleted artifact %s on %s", key, backend)


def save_video(job_id: str, data: bytes) -> str:
    """Store a rendered video and return the key used as the job result."""
    return upload_fileobj(io.BytesIO(data), video_key(job_id))
