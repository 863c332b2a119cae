"""
Configuration for the ingestion API and worker.

Both processes read the same environment variables (and an optional .env
file) so intake and worker agree on Redis, database, storage and Qdrant.
"""

import tempfile
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Ingestion service settings."""

    # Service identification
    SERVICE_NAME: str = "docingest"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "info"
    LOG_JSON: bool = False

    # Database configuration (PostgreSQL)
    DB_HOST: str = "postgres"
    DB_PORT: int = 5432
    DB_NAME: str = "docingest"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    # Full URL wins over the DB_* parts when set (e.g. sqlite:///./docingest.db)
    DATABASE_URL_OVERRIDE: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis configuration
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # Content store (S3-compatible: Cloudflare R2, MinIO, AWS S3)
    STORAGE_ENDPOINT_URL: Optional[str] = None
    STORAGE_REGION: str = "auto"
    STORAGE_ACCESS_KEY_ID: str = ""
    STORAGE_SECRET_ACCESS_KEY: str = ""
    STORAGE_BUCKET: str = "documents"
    UPLOAD_URL_EXPIRES_IN: int = 3600  # 1 hour
    UPLOAD_KEY_PREFIX: str = "pdfs"

    # Qdrant configuration
    QDRANT_HOST: str = "qdrant"
    QDRANT_PORT: int = 6333
    QDRANT_API_KEY: Optional[str] = None
    QDRANT_COLLECTION: str = "documents"

    # Embedding API (OpenAI-compatible, e.g. Ollama /v1 or vLLM)
    EMBEDDING_API_BASE: str = "http://localhost:11434/v1"
    EMBEDDING_API_KEY: str = "sk-dummy-key"
    EMBEDDING_MODEL: str = "mxbai-embed-large"
    EMBEDDING_TIMEOUT: float = 120.0

    # Text splitting configuration
    CHUNK_SIZE: int = 600
    CHUNK_OVERLAP: int = 100
    MIN_CHUNK_CHARS: int = 10
    # mxbai-embed-large accepts 512 tokens (~2048 chars); stay well under
    MAX_CHUNK_CHARS: int = 1500
    OVERSIZED_CHUNK_OVERLAP: int = 50

    # Queue / worker configuration
    QUEUE_NAME: str = "arq:pdf-ingestion"
    WORKER_CONCURRENCY: int = 5
    JOB_TIMEOUT: int = 1800  # 30 minutes
    JOB_TTL_SECONDS: int = 7 * 24 * 3600
    JOB_STALLED_INTERVAL: int = 300  # 5 minutes without a heartbeat
    JOB_MAX_STALLED_COUNT: int = 2
    TEMP_DIR: str = tempfile.gettempdir()

    # OpenTelemetry configuration
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://jaeger:4317"
    OTEL_SERVICE_NAME: str = "docingest"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
