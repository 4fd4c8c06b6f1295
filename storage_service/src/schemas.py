from typing import Any, Callable, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_RETRIES_COUNT = 3
DEFAULT_RETRY_INTERVAL_MS = 500
DEFAULT_MAX_RETRY_TIMEOUT_MS = 90000

# Credential descriptor handed to the provider client
class InlineCredentials(BaseModel):
    client_email: str = Field(..., min_length=1)
    private_key: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unescape_newlines(self) -> "InlineCredentials":
        # keys pasted from env vars arrive with literal "\n" sequences
        self.private_key = self.private_key.replace("\\n", "\n")
        return self

class GcsCredentials(BaseModel):
    project_id: str = Field(..., min_length=1)
    key_filename: Optional[str] = None
    credentials: Optional[InlineCredentials] = None

    @model_validator(mode="after")
    def _require_key_source(self) -> "GcsCredentials":
        if not self.key_filename and self.credentials is None:
            raise ValueError("either `key_filename` or `credentials` must be provided")
        return self

class StorageOptions(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    bucket: str = Field(..., min_length=1)
    logging_function: Optional[Callable[..., None]] = None
    retries_count: int = Field(DEFAULT_RETRIES_COUNT, ge=1)
    retry_interval: int = Field(DEFAULT_RETRY_INTERVAL_MS, ge=0, description="Milliseconds between attempts.")
    max_retry_timeout: Optional[int] = Field(DEFAULT_MAX_RETRY_TIMEOUT_MS, gt=0, description="Per-attempt deadline in milliseconds.")

class SaveOptions(BaseModel):
    compress: bool = False
    content_type: str = "application/json"
    metadata: Dict[str, str] = {}
    get_url: bool = False
    public: bool = True

class ReadOptions(BaseModel):
    decompress: bool = False

# Provider listing record before normalization
class RawEntry(BaseModel):
    name: str
    envelope: Optional[Dict[str, Any]] = None

class RemoteEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Full object path inside the bucket.")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Provider metadata envelope.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="User metadata.")
