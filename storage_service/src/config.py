from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):

    model_config = SettingsConfigDict(env_file=".env", env_prefix="GCS_", extra="ignore")

    # Credentials
    project_id: Optional[str] = None
    key_filename: Optional[str] = None
    client_email: Optional[str] = None
    private_key: Optional[str] = None

    # Bucket
    bucket: Optional[str] = None

    # Retry budget
    retries_count: int = 3
    retry_interval_ms: int = 500
    max_retry_timeout_ms: int = 90000

    # Logging
    service_name: str = "gcs-storage"
    log_level: str = "INFO"
    tracing_enabled: bool = False
    use_cloud_trace: bool = False

settings = Settings() # type: ignore
