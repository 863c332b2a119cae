"""
Ingestion Worker - ARQ worker for processing PDF ingestion jobs.
"""

from typing import Any

import structlog
from arq import cron

from ..arq_client import create_redis_client, get_redis_settings
from ..config import settings
from ..database import get_db_session
from ..errors import format_failure_reason
from ..logger import setup_logging
from ..models import UploadStatus
from ..schemas import IngestionStage, JobPayload
from ..services.embedding_service import EmbeddingService
from ..services.job_queue import JobQueue
from ..services.qdrant_service import QdrantService
from ..services.storage_service import storage_service
from ..services.upload_registry import UploadRegistry
from ..telemetry import get_tracer, setup_telemetry
from .processor import IngestionProcessor

logger = structlog.get_logger()


class JobContext:
    """Progress channel from the pipeline back to the job's state hash."""

    def __init__(self, queue: JobQueue, job_id: str, attempt: int = 0):
        self.queue = queue
        self.job_id = job_id
        self.attempt = attempt

    async def update_progress(self, stage: IngestionStage, progress: int, message: str | None = None):
        await self.queue.update_progress(self.job_id, self.attempt, stage, progress, message)


async def process_pdf_job(ctx: dict, job_id: str, payload: dict, attempt: int = 0) -> dict[str, Any]:
    """Process one uploaded PDF."""
    queue: JobQueue = ctx["job_queue"]
    job_payload = JobPayload.model_validate(payload)
    tracer = get_tracer()

    with structlog.contextvars.bound_contextvars(
        job_id=job_id, content_hash=job_payload.content_hash, attempt=attempt
    ), tracer.start_as_current_span("process_pdf_job") as span:
        span.set_attribute("job_id", job_id)
        span.set_attribute("content_hash", job_payload.content_hash)
        span.set_attribute("filename", job_payload.original_filename)

        if not await queue.mark_active(job_id, attempt):
            logger.warning("Skipping job: superseded attempt or expired state")
            return {"status": "skipped"}

        logger.info("Processing PDF job", filename=job_payload.original_filename)
        processor = IngestionProcessor(
            job_ctx=JobContext(queue, job_id, attempt),
            storage=ctx["storage"],
            embeddings=ctx["embeddings"],
            vector_store=ctx["vector_store"],
            job_id=job_id,
        )
        try:
            result = await processor.process(job_payload)
        except Exception as e:
            logger.error("PDF job failed", error=str(e))
            span.record_exception(e)
            await queue.mark_failed(job_id, attempt, format_failure_reason(e))
            raise

        await queue.mark_completed(job_id, attempt, result)
        logger.info("PDF job completed", chunks=result["processedChunks"])
        return result


async def requeue_stalled_jobs(ctx: dict) -> dict[str, int]:
    """Cron: requeue jobs whose heartbeat went quiet; fail those past the stall budget."""
    queue: JobQueue = ctx["job_queue"]
    requeued, failed = await queue.requeue_stalled(
        settings.JOB_STALLED_INTERVAL, settings.JOB_MAX_STALLED_COUNT
    )
    for job in failed:
        with get_db_session() as db:
            UploadRegistry(db).update_status(
                job.payload.content_hash,
                UploadStatus.FAILED,
                error_message=job.failure_reason,
                job_id=job.job_id,
            )
    if requeued or failed:
        logger.info("Stall sweep", requeued=len(requeued), failed=len(failed))
    return {"requeued": len(requeued), "failed": len(failed)}


async def startup(ctx: dict):
    """Worker startup handler."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    logger.info("Starting ingestion worker", queue=settings.QUEUE_NAME)

    setup_telemetry(f"{settings.OTEL_SERVICE_NAME}-worker", "1.0.0")

    # ctx["redis"] is ARQ's own pool; job state uses a decoded client
    ctx["state_redis"] = create_redis_client()
    ctx["job_queue"] = JobQueue(ctx["state_redis"], ctx["redis"])
    ctx["storage"] = storage_service
    ctx["embeddings"] = EmbeddingService()
    ctx["vector_store"] = QdrantService()

    logger.info("Connected to Redis", host=settings.REDIS_HOST, port=settings.REDIS_PORT)


async def shutdown(ctx: dict):
    """Worker shutdown handler."""
    logger.info("Shutting down ingestion worker")
    await ctx["state_redis"].aclose()


class WorkerSettings:
    """ARQ worker settings."""

    redis_settings = get_redis_settings()
    queue_name = settings.QUEUE_NAME

    functions = [process_pdf_job]
    cron_jobs = [cron(requeue_stalled_jobs, second=0)]

    on_startup = startup
    on_shutdown = shutdown

    max_jobs = settings.WORKER_CONCURRENCY
    job_timeout = settings.JOB_TIMEOUT

    # Retries are explicit (retry endpoint) or via the stall sweep
    max_tries = 1

    health_check_interval = 30
