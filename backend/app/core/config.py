from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Paper2Video API"
    env: str = "dev"
    api_prefix: str = "/v1"
    log_level: str = "INFO"

    postgres_dsn: str = "sqlite:///./paper2video.db"
    redis_dsn: str = "redis://localhost:6379/0"

    job_store_backend: str = "sql"
    job_update_max_retries: int = 3

    storage_backend: str = "s3"
    local_storage_dir: str = "./data"

    s3_endpoint_url: str = "http://localhost:9000"
    s3_region: str = "us-east-1"
    s3_access_key: str = "minio"
    s3_secret_key: str = "minio123"
    s3_bucket: str = "paper2video"

    gcs_bucket: str = ""

    generation_provider: str = "http"
    generation_base_url: str = "http://localhost:8100"
    generation_api_key: str = ""
    generation_timeout_seconds: int = 120
    generation_max_retries: int = 2

    task_timeout_minutes: int = 20

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
