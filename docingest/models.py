"""SQLAlchemy database models."""
import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from docingest.database import Base


class UploadStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadRecord(Base):
    """One row per distinct document content (deduplication key: content_hash)."""
    __tablename__ = "file_uploads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    content_hash = Column(String(64), unique=True, nullable=False, index=True)  # SHA-256 hex
    original_filename = Column(String(255), nullable=False)
    uploaded_by = Column(String(255), nullable=True)
    job_id = Column(String(255), unique=True, nullable=False, index=True)  # latest job for this content
    object_key = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default=UploadStatus.PROCESSING, index=True)
    chunk_count = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return (
            f"<UploadRecord(id={self.id}, content_hash='{self.content_hash}', "
            f"job_id='{self.job_id}', status='{self.status}')>"
        )
