"""Upload metadata registry: one UploadRecord per content hash."""
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import UploadRecord, UploadStatus

logger = structlog.get_logger()


class UploadRegistry:
    """Durable per-content lifecycle records, keyed by content hash."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_hash(self, content_hash: str) -> Optional[UploadRecord]:
        return (
            self.db.query(UploadRecord)
            .filter(UploadRecord.content_hash == content_hash)
            .first()
        )

    def find_by_job_id(self, job_id: str) -> Optional[UploadRecord]:
        return self.db.query(UploadRecord).filter(UploadRecord.job_id == job_id).first()

    def list_recent(self, limit: int = 100) -> list[UploadRecord]:
        return (
            self.db.query(UploadRecord)
            .order_by(UploadRecord.uploaded_at.desc())
            .limit(limit)
            .all()
        )

    def start_processing(
        self,
        content_hash: str,
        job_id: str,
        original_filename: str,
        object_key: str,
        uploaded_by: Optional[str] = None,
    ) -> UploadRecord:
        """
        Upsert by hash: create the record in `processing`, or point the existing
        record at the new job (retry / re-upload after failure).
        """
        record = self.find_by_hash(content_hash)
        if record is None:
            record = UploadRecord(
                content_hash=content_hash,
                original_filename=original_filename,
                uploaded_by=uploaded_by,
                job_id=job_id,
                object_key=object_key,
                status=UploadStatus.PROCESSING,
                attempt_count=1,
            )
            self.db.add(record)
            try:
                self.db.commit()
            except IntegrityError:
                # Concurrent insert for the same hash won; fall through to update it
                self.db.rollback()
                logger.info("Concurrent upload record insert", content_hash=content_hash)
                record = self.find_by_hash(content_hash)
                if record is None:
                    raise
                return self._replace_job(record, job_id, original_filename, object_key, uploaded_by)
            self.db.refresh(record)
            logger.info("Created upload record", content_hash=content_hash, job_id=job_id)
            return record
        return self._replace_job(record, job_id, original_filename, object_key, uploaded_by)

    def _replace_job(
        self,
        record: UploadRecord,
        job_id: str,
        original_filename: str,
        object_key: str,
        uploaded_by: Optional[str],
    ) -> UploadRecord:
        previous_job_id = record.job_id
        record.job_id = job_id
        record.original_filename = original_filename
        record.object_key = object_key
        if uploaded_by is not None:
            record.uploaded_by = uploaded_by
        record.status = UploadStatus.PROCESSING
        record.chunk_count = None
        record.error_message = None
        record.attempt_count = (record.attempt_count or 0) + 1
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Upload record moved to new job",
            content_hash=record.content_hash,
            job_id=job_id,
            previous_job_id=previous_job_id,
            attempt_count=record.attempt_count,
        )
        return record

    def update_status(
        self,
        content_hash: str,
        status: str,
        chunk_count: Optional[int] = None,
        error_message: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> bool:
        """
        Record the job outcome.

        With `job_id`, the write only applies while the record still belongs to
        that job; a retry that moved the record to a newer job is left alone.
        Returns False when nothing was written.
        """
        query = self.db.query(UploadRecord).filter(UploadRecord.content_hash == content_hash)
        if job_id is not None:
            query = query.filter(UploadRecord.job_id == job_id)
        updated = query.update(
            {
                UploadRecord.status: status,
                UploadRecord.chunk_count: chunk_count,
                UploadRecord.error_message: error_message,
            },
            synchronize_session="fetch",
        )
        self.db.commit()
        if not updated:
            if job_id is not None and self.find_by_hash(content_hash) is not None:
                logger.warning(
                    "Upload record owned by a newer job, not updated",
                    content_hash=content_hash,
                    job_id=job_id,
                    status=status,
                )
            else:
                logger.error("No upload record to update", content_hash=content_hash, status=status)
            return False
        logger.info(
            "Updated upload record",
            content_hash=content_hash,
            job_id=job_id,
            status=status,
            chunk_count=chunk_count,
        )
        return True
