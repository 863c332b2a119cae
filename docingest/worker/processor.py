"""
PDF ingestion pipeline: fetch, extract, chunk, validate, embed, persist, finalize.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, List, Optional

import structlog

from ..config import settings
from ..database import get_db_session
from ..errors import EmbeddingServiceError, EmptyDocumentError, format_failure_reason
from ..models import UploadStatus
from ..schemas import Chunk, IngestionStage, JobPayload
from ..services.upload_registry import UploadRegistry
from ..telemetry import IngestionMetrics
from .chunker import chunk_pages, validate_chunks
from .loader import load_pdf_pages, temporary_pdf

logger = structlog.get_logger()

# Progress checkpoints
PROGRESS_FETCH = 10
PROGRESS_EXTRACT = 30
PROGRESS_CHUNK = 35
PROGRESS_VALIDATE = 40
PROGRESS_EMBED = 50
PROGRESS_PERSIST = 80
PROGRESS_FINALIZE = 95


def point_id(content_hash: str, chunk_index: int) -> str:
    """Stable vector id per (content, chunk) so replays overwrite instead of duplicating."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{content_hash}_{chunk_index}"))


class IngestionProcessor:
    """
    Runs one PDF through the pipeline, reporting progress through `job_ctx`.

    Upload record writes are fenced on `job_id`: once a retry hands the record
    to a newer job, this run no longer changes it.
    """

    def __init__(
        self,
        job_ctx,
        storage,
        embeddings,
        vector_store,
        session_factory: Callable = get_db_session,
        temp_dir: str | None = None,
        job_id: str | None = None,
    ):
        self.job_ctx = job_ctx
        self.job_id = job_id
        self.storage = storage
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.session_factory = session_factory
        self.temp_dir = temp_dir or settings.TEMP_DIR
        self.metrics = IngestionMetrics()
        self._stage: Optional[IngestionStage] = None
        self._stage_started = 0.0

    async def _run(self, fn, *args):
        """Run a blocking client call off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    async def _progress(self, stage: IngestionStage, progress: int, message: str | None = None):
        self._enter_stage(stage)
        await self.job_ctx.update_progress(stage, progress, message)

    def _enter_stage(self, stage: IngestionStage):
        """Record how long the previous stage ran once the pipeline moves on."""
        if stage == self._stage:
            return
        now = time.monotonic()
        if self._stage is not None:
            self.metrics.record_processing_time((now - self._stage_started) * 1000, self._stage.value)
        self._stage = stage
        self._stage_started = now

    def _update_record(
        self,
        content_hash: str,
        status: str,
        chunk_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        with self.session_factory() as db:
            return UploadRegistry(db).update_status(
                content_hash, status, chunk_count=chunk_count, error_message=error_message, job_id=self.job_id
            )

    async def process(self, payload: JobPayload) -> dict[str, Any]:
        """
        Process one uploaded PDF end to end.

        Returns the job result. Any unrecovered error marks the upload record
        failed and is re-raised for the queue to record.
        """
        start = time.monotonic()
        self._stage = None
        log = logger.bind(content_hash=payload.content_hash, object_key=payload.object_key)
        try:
            await self._progress(IngestionStage.FETCHING, PROGRESS_FETCH, "Downloading PDF")
            data = await self._run(self.storage.download_file, payload.object_key)

            with temporary_pdf(data, self.temp_dir) as path:
                await self._progress(IngestionStage.EXTRACTING, PROGRESS_EXTRACT, "Extracting text")
                pages = await self._run(load_pdf_pages, path)
                if not pages:
                    raise EmptyDocumentError("No text could be extracted from the PDF")

                await self._progress(IngestionStage.CHUNKING, PROGRESS_CHUNK, f"Chunking {len(pages)} pages")
                chunks = chunk_pages(pages)

                await self._progress(IngestionStage.VALIDATING, PROGRESS_VALIDATE, f"Validating {len(chunks)} chunks")
                valid = validate_chunks(chunks)
                if not valid:
                    raise EmptyDocumentError("No valid chunks after validation")

                await self._progress(IngestionStage.EMBEDDING, PROGRESS_EMBED, f"Embedding {len(valid)} chunks")
                vectors = await self._embed(valid)

                await self._progress(IngestionStage.PERSISTING, PROGRESS_PERSIST, "Storing vectors")
                points = self._build_points(payload, valid, vectors)
                stored = await self._run(self.vector_store.upsert_points, points)
                self.metrics.record_chunks_created(stored, self.vector_store.collection_name)

            await self._progress(IngestionStage.FINALIZING, PROGRESS_FINALIZE, "Finalizing")
            record_found = self._update_record(payload.content_hash, UploadStatus.COMPLETED, chunk_count=stored)
            if not record_found:
                log.error("No upload record owned by this job at finalize; vectors are stored", job_id=self.job_id)
            await self._run(self.storage.delete_file, payload.object_key)

            await self._progress(IngestionStage.DONE, 100, "Done")
        except Exception as e:
            self._enter_stage(IngestionStage.FAILED)
            reason = format_failure_reason(e)
            log.error("Ingestion failed", error=reason)
            self.metrics.record_extraction_failure(getattr(e, "code", type(e).__name__))
            self.metrics.record_document_processed("failed")
            try:
                self._update_record(payload.content_hash, UploadStatus.FAILED, error_message=reason)
            except Exception as db_error:
                log.error("Failed to mark upload record failed", error=str(db_error))
            raise

        duration_ms = (time.monotonic() - start) * 1000
        self.metrics.record_processing_time(duration_ms, "total")
        self.metrics.record_document_processed("completed")
        log.info(
            "Ingestion completed",
            total_chunks=len(valid),
            processed_chunks=stored,
            duration_ms=round(duration_ms),
        )
        return {
            "status": "success",
            "contentHash": payload.content_hash,
            "totalChunks": len(valid),
            "processedChunks": stored,
            "recordMissing": not record_found,
        }

    async def _embed(self, chunks: List[Chunk]) -> List[Optional[List[float]]]:
        """Batch first; on failure embed one by one, keeping None for chunks that fail."""
        texts = [c.text for c in chunks]
        batch = await self._run(self.embeddings.embed_batch, texts)
        if batch.ok:
            return batch.vectors

        logger.warning("Batch embedding failed, falling back to one-by-one", error=str(batch.error), count=len(texts))
        self.metrics.record_embedding_fallback(getattr(self.embeddings, "model", "unknown"))

        vectors: List[Optional[List[float]]] = []
        total = len(chunks)
        for i, chunk in enumerate(chunks):
            try:
                vectors.append(await self._run(self.embeddings.embed_one, chunk.text))
            except EmbeddingServiceError as e:
                logger.warning("Skipping chunk that failed to embed", index=chunk.index, error=str(e))
                vectors.append(None)
            # Keeps the heartbeat fresh during long fallbacks
            progress = PROGRESS_EMBED + int((i + 1) / total * (PROGRESS_PERSIST - PROGRESS_EMBED))
            await self._progress(IngestionStage.EMBEDDING, progress, f"Embedded {i + 1}/{total} chunks")

        failed = sum(1 for v in vectors if v is None)
        if failed:
            logger.warning("Chunks without embeddings", failed=failed, total=total)
        return vectors

    def _build_points(self, payload: JobPayload, chunks: List[Chunk], vectors: List[Optional[List[float]]]):
        ingested_at = datetime.now(timezone.utc).isoformat()
        points = []
        for chunk, vector in zip(chunks, vectors):
            if vector is None:
                continue
            points.append(
                self.vector_store.build_point(
                    point_id(payload.content_hash, chunk.index),
                    vector,
                    {
                        "text": chunk.text,
                        "content_hash": payload.content_hash,
                        "source_filename": payload.original_filename,
                        "chunk_index": chunk.index,
                        "page_number": chunk.page_number,
                        "object_key": payload.object_key,
                        "uploader_id": payload.uploader_id,
                        "ingested_at": ingested_at,
                        "metadata": payload.metadata,
                    },
                )
            )
        return points
