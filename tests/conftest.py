"""Test configuration and fixtures."""

import os
import tempfile

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite://")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("TEMP_DIR", tempfile.mkdtemp())

from contextlib import contextmanager
from fnmatch import fnmatch
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docingest.database import Base
from docingest.errors import EmbeddingServiceError, StorageError
from docingest.services.embedding_service import BatchEmbeddingResult
from docingest.services.job_queue import JobQueue
from docingest.services.qdrant_service import QdrantService

# SQLite in-memory database shared by every session in a test
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SAMPLE_HASH = "a" * 64
OTHER_HASH = "b" * 64


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and drop after."""
    from docingest import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Get a test database session."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def testing_db_session():
    session = TestingSessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ============== Fakes ==============


class FakeRedis:
    """Just enough of redis.asyncio for job hashes (decode_responses=True)."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}

    async def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def eval(self, script, numkeys, key, *args):
        """Same contract as the job queue's compare-and-set script."""
        guards = int(args[0])
        pairs = args[1:]
        current = self.hashes.get(key, {})
        for i in range(guards):
            if current.get(pairs[2 * i]) != pairs[2 * i + 1]:
                return 0
        updates = pairs[2 * guards:]
        self.hashes[key].update({updates[i]: str(updates[i + 1]) for i in range(0, len(updates), 2)})
        return 1

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    async def scan_iter(self, match="*", count=None):
        for key in list(self.hashes):
            if fnmatch(key, match):
                yield key

    async def aclose(self):
        pass


class FakeStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_delete = False

    def get_upload_url(self, key, expires_in=None):
        return f"https://storage.test/{key}?X-Amz-Expires={expires_in}"

    def upload_file(self, key, data):
        self.objects[key] = data

    def download_file(self, key):
        if key not in self.objects:
            raise StorageError(f"Storage download failed: NoSuchKey {key}")
        return self.objects[key]

    def object_exists(self, key):
        return key in self.objects

    def delete_file(self, key):
        if self.fail_delete:
            return False
        self.deleted.append(key)
        self.objects.pop(key, None)
        return True


class FakeEmbeddings:
    model = "test-embed"

    def __init__(self, batch_fails=False, failing_texts=()):
        self.batch_fails = batch_fails
        self.failing_texts = set(failing_texts)
        self.one_calls = 0

    def _vector(self, text):
        return [float(len(text)), 1.0, 0.5]

    def embed_batch(self, texts):
        if self.batch_fails:
            return BatchEmbeddingResult(error=EmbeddingServiceError("batch too large"))
        return BatchEmbeddingResult(vectors=[self._vector(t) for t in texts])

    def embed_one(self, text):
        self.one_calls += 1
        if text in self.failing_texts:
            raise EmbeddingServiceError("model rejected input")
        return self._vector(text)


class FakeVectorStore:
    collection_name = "documents"
    build_point = staticmethod(QdrantService.build_point)

    def __init__(self):
        self.points = []

    def upsert_points(self, points):
        self.points.extend(points)
        return len(points)


class FakeJobContext:
    def __init__(self):
        self.updates = []

    async def update_progress(self, stage, progress, message=None):
        self.updates.append((stage, progress, message))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def arq_pool():
    return AsyncMock()


@pytest.fixture
def job_queue(fake_redis, arq_pool):
    return JobQueue(fake_redis, arq_pool, ttl_seconds=3600, queue_name="arq:test")


@pytest.fixture
def storage():
    return FakeStorage()
