"""
Intake: content-hash deduplication, upload targets and job enqueueing.

The duplicate check is optimistic (read, then act). Two near-simultaneous
uploads of identical bytes may both enqueue; both jobs converge on the same
UploadRecord, so the cost is wasted work only.
"""
from __future__ import annotations

import time
from typing import Any, Optional, Union

import structlog

from ..config import settings
from ..errors import InvalidStateError, NotFoundError
from ..models import UploadRecord, UploadStatus
from ..schemas import (
    DuplicateResponse,
    JobPayload,
    JobStatusResponse,
    ProcessingResponse,
    ProcessResponse,
    RetryResponse,
    UploadRecordResponse,
    UploadTargetResponse,
)
from .job_queue import JobQueue
from .storage_service import StorageService
from .upload_registry import UploadRegistry

logger = structlog.get_logger()

UploadOutcome = Union[UploadTargetResponse, DuplicateResponse, ProcessingResponse]


def build_object_key(content_hash: str, filename: str, timestamp_ms: int | None = None) -> str:
    """Unique object key from hash, time and name."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{settings.UPLOAD_KEY_PREFIX}/{content_hash}-{timestamp_ms}-{filename}"


class IntakeService:
    def __init__(self, registry: UploadRegistry, storage: StorageService, queue: JobQueue):
        self.registry = registry
        self.storage = storage
        self.queue = queue

    async def request_upload(self, file_name: str, file_hash: str) -> UploadOutcome:
        logger.info("Upload URL requested", file_name=file_name, content_hash=file_hash)

        existing = self.registry.find_by_hash(file_hash)
        if existing is not None:
            if existing.status == UploadStatus.COMPLETED:
                logger.info("Duplicate file detected", content_hash=file_hash)
                return DuplicateResponse(
                    message=f'File already processed as "{existing.original_filename}"',
                    metadata=UploadRecordResponse.model_validate(existing),
                )
            if existing.status == UploadStatus.PROCESSING:
                logger.info("File already processing", content_hash=file_hash, job_id=existing.job_id)
                return ProcessingResponse(job_id=existing.job_id)

        object_key = build_object_key(file_hash, file_name)
        expires_in = settings.UPLOAD_URL_EXPIRES_IN
        upload_url = self.storage.get_upload_url(object_key, expires_in)
        logger.info("Generated upload URL", object_key=object_key)
        return UploadTargetResponse(
            upload_url=upload_url,
            object_key=object_key,
            file_hash=file_hash,
            expires_in_seconds=expires_in,
        )

    async def trigger_processing(
        self,
        object_key: str,
        file_name: str,
        file_hash: str,
        uploader_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ProcessResponse:
        logger.info("Processing requested", file_name=file_name, object_key=object_key)

        existing = self.registry.find_by_hash(file_hash)
        if existing is not None and existing.status == UploadStatus.PROCESSING:
            logger.warning("File already processing", content_hash=file_hash, job_id=existing.job_id)
            return ProcessResponse(status="already_processing", job_id=existing.job_id)

        payload = JobPayload(
            object_key=object_key,
            content_hash=file_hash,
            original_filename=file_name,
            uploader_id=uploader_id,
            metadata=metadata or {},
        )
        # Job first, then the record that references it
        job_id = await self.queue.enqueue(payload)
        self._record_job(payload, job_id)
        return ProcessResponse(status="queued", job_id=job_id)

    def _record_job(self, payload: JobPayload, job_id: str) -> UploadRecord:
        try:
            return self.registry.start_processing(
                content_hash=payload.content_hash,
                job_id=job_id,
                original_filename=payload.original_filename,
                object_key=payload.object_key,
                uploaded_by=payload.uploader_id,
            )
        except Exception as e:
            logger.error(
                "Upload record not saved; job is orphaned",
                job_id=job_id,
                content_hash=payload.content_hash,
                error=str(e),
            )
            raise

    async def get_job_status(self, job_id: str) -> JobStatusResponse:
        job = await self.queue.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        record = self.registry.find_by_job_id(job_id)
        return JobStatusResponse(
            id=job.job_id,
            status=job.status,
            stage=job.stage,
            progress=job.progress,
            result=job.result,
            failure_reason=job.failure_reason,
            metadata=UploadRecordResponse.model_validate(record) if record else None,
        )

    def get_record(self, content_hash: str) -> UploadRecord:
        record = self.registry.find_by_hash(content_hash.strip().lower())
        if record is None:
            raise NotFoundError(f"File not found: {content_hash}")
        return record

    async def retry(self, job_id: str) -> RetryResponse:
        """
        Re-run a finished job as a new job; the old job is left untouched.

        If the content is already being processed by a newer job, that job is
        returned instead of enqueueing another. A job whose source object is
        gone (deleted after a successful run) cannot be retried.
        """
        job = await self.queue.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        if not job.is_terminal:
            raise InvalidStateError(f"Cannot retry job in state: {job.status.value}")

        record = self.registry.find_by_hash(job.payload.content_hash)
        if record is not None and record.status == UploadStatus.PROCESSING and record.job_id != job_id:
            logger.warning("File already processing", content_hash=record.content_hash, job_id=record.job_id)
            return RetryResponse(status="already_processing", new_job_id=record.job_id, original_job_id=job_id)

        if not self.storage.object_exists(job.payload.object_key):
            raise InvalidStateError(f"Cannot retry job {job_id}: source object no longer exists")

        new_job_id = await self.queue.enqueue(job.payload)
        self._record_job(job.payload, new_job_id)
        logger.info("Retry job created", job_id=new_job_id, original_job_id=job_id)
        return RetryResponse(new_job_id=new_job_id, original_job_id=job_id)
