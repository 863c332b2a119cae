"""
Ingestion API router - upload targets, job triggering, status and retry.
"""
from typing import List, Union

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..arq_client import get_arq_pool, get_redis_client
from ..database import get_db
from ..errors import InvalidStateError, NotFoundError, StorageError
from ..schemas import (
    DuplicateResponse,
    JobStatusResponse,
    ProcessingResponse,
    ProcessRequest,
    ProcessResponse,
    RetryResponse,
    UploadRecordResponse,
    UploadTargetResponse,
    UploadUrlRequest,
)
from ..services.intake_service import IntakeService
from ..services.job_queue import JobQueue
from ..services.storage_service import StorageService, storage_service
from ..services.upload_registry import UploadRegistry

logger = structlog.get_logger()

router = APIRouter(prefix="/ingestion", tags=["ingestion"])


# ============================================
# Dependencies
# ============================================

def get_storage_service() -> StorageService:
    return storage_service


async def get_job_queue() -> JobQueue:
    return JobQueue(await get_redis_client(), await get_arq_pool())


def get_intake_service(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    queue: JobQueue = Depends(get_job_queue),
) -> IntakeService:
    return IntakeService(UploadRegistry(db), storage, queue)


# ============================================
# Endpoints
# ============================================

@router.post(
    "/upload-url",
    response_model=Union[UploadTargetResponse, DuplicateResponse, ProcessingResponse],
)
async def request_upload_url(
    request: UploadUrlRequest,
    intake: IntakeService = Depends(get_intake_service),
):
    """
    Get a pre-signed upload URL, or a short-circuit answer when the same
    content was already processed or is being processed.
    """
    try:
        return await intake.request_upload(request.file_name, request.file_hash)
    except StorageError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/process", response_model=ProcessResponse)
async def trigger_processing(
    request: ProcessRequest,
    intake: IntakeService = Depends(get_intake_service),
):
    """Queue an uploaded PDF for ingestion."""
    return await intake.trigger_processing(
        object_key=request.object_key,
        file_name=request.file_name,
        file_hash=request.file_hash,
        uploader_id=request.user_id,
        metadata=request.metadata,
    )


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, intake: IntakeService = Depends(get_intake_service)):
    try:
        return await intake.get_job_status(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/file/{file_hash}", response_model=UploadRecordResponse)
async def get_file(file_hash: str, intake: IntakeService = Depends(get_intake_service)):
    try:
        return intake.get_record(file_hash)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/files", response_model=List[UploadRecordResponse])
async def list_files(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Most recent uploads first."""
    return UploadRegistry(db).list_recent(limit)


@router.post("/retry/{job_id}", response_model=RetryResponse)
async def retry_job(job_id: str, intake: IntakeService = Depends(get_intake_service)):
    """Re-run a failed or completed job as a new job."""
    try:
        return await intake.retry(job_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStateError as e:
        logger.warning("Retry rejected", job_id=job_id, reason=str(e))
        return JSONResponse(status_code=409, content={"status": "error", "message": str(e)})
    except StorageError as e:
        raise HTTPException(status_code=502, detail=str(e))
