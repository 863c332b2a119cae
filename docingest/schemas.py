"""Pydantic schemas for request/response validation and the job/chunk types."""
import posixpath
import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


class CamelModel(BaseModel):
    """Wire models: camelCase JSON, snake_case also accepted on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============== Queue / pipeline types ==============


class JobState(str, Enum):
    """Queue-native state of a job."""
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionStage(str, Enum):
    """Pipeline stage the worker is currently in."""
    QUEUED = "queued"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    VALIDATING = "validating"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class JobPayload(BaseModel):
    """Payload carried by every processing job."""
    object_key: str
    content_hash: str
    original_filename: str
    uploader_id: Optional[str] = None
    # Opaque tagged metadata; copied into vector payloads, never inspected
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobRecord(BaseModel):
    """Job as stored in the Redis hash job:{job_id}."""
    job_id: str
    status: JobState
    stage: IngestionStage = IngestionStage.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    payload: JobPayload
    result: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    attempt: int = 0
    stalled_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobState.COMPLETED, JobState.FAILED)


class PageText(BaseModel):
    """Text of one extracted PDF page (page_number is 1-based)."""
    page_number: int
    text: str


class Chunk(BaseModel):
    """A passage prepared for embedding."""
    text: str
    page_number: int = 0
    index: int = 0


# ============== Requests ==============


def _clean_filename(value: str) -> str:
    name = posixpath.basename(value.replace("\\", "/")).strip()
    if not name:
        raise ValueError("fileName must not be empty")
    if not name.lower().endswith(".pdf"):
        raise ValueError("Only PDF files are supported")
    return name


def _clean_hash(value: str) -> str:
    value = value.strip().lower()
    if not _SHA256_RE.match(value):
        raise ValueError("fileHash must be a 64-character hex SHA-256 digest")
    return value


class UploadUrlRequest(CamelModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_hash: str = Field(..., min_length=1)
    user_id: Optional[str] = None

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        return _clean_filename(v)

    @field_validator("file_hash")
    @classmethod
    def validate_file_hash(cls, v: str) -> str:
        return _clean_hash(v)


class ProcessRequest(CamelModel):
    object_key: str = Field(..., min_length=1, max_length=500)
    file_name: str = Field(..., min_length=1, max_length=255)
    file_hash: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        return _clean_filename(v)

    @field_validator("file_hash")
    @classmethod
    def validate_file_hash(cls, v: str) -> str:
        return _clean_hash(v)


# ============== Responses ==============


class UploadRecordResponse(CamelModel):
    id: str
    content_hash: str
    original_filename: str
    uploaded_by: Optional[str] = None
    job_id: str
    object_key: str
    status: str
    chunk_count: Optional[int] = None
    error_message: Optional[str] = None
    attempt_count: int = 1
    uploaded_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class UploadTargetResponse(CamelModel):
    upload_url: str
    object_key: str
    file_hash: str
    expires_in_seconds: int


class DuplicateResponse(CamelModel):
    status: str = "duplicate"
    message: str
    skip_upload: bool = True
    metadata: UploadRecordResponse


class ProcessingResponse(CamelModel):
    status: str = "processing"
    message: str = "File is currently being processed"
    job_id: str
    skip_upload: bool = True


class ProcessResponse(CamelModel):
    status: str  # queued | already_processing
    job_id: str


class JobStatusResponse(CamelModel):
    id: str
    status: JobState
    stage: IngestionStage
    progress: int
    result: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None
    metadata: Optional[UploadRecordResponse] = None


class RetryResponse(CamelModel):
    status: str = "queued"
    new_job_id: str
    original_job_id: str
