"""
Job queue adapter: ARQ for delivery, a Redis hash per job for state.

Every job is stored as job:{job_id} with its payload, queue state, pipeline
stage, progress and heartbeat. ARQ only carries (job_id, payload, attempt);
the worker reports back exclusively through this adapter, so intake and
worker share no in-process state.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from ..config import settings
from ..schemas import IngestionStage, JobPayload, JobRecord, JobState

logger = structlog.get_logger()

# ARQ function name the worker registers
PROCESS_PDF_FUNCTION = "process_pdf_job"

JOB_KEY_PREFIX = "job:"

# KEYS[1] job hash; ARGV[1] guard count n, then n expected field/value pairs,
# then the field/value pairs to write. Returns 1 when written, 0 when any
# guard field no longer holds its expected value (or the hash is gone).
COMPARE_AND_SET_SCRIPT = """
local guards = tonumber(ARGV[1])
for i = 0, guards - 1 do
    if redis.call('HGET', KEYS[1], ARGV[2 + i * 2]) ~= ARGV[3 + i * 2] then
        return 0
    end
end
redis.call('HSET', KEYS[1], unpack(ARGV, 2 + guards * 2))
return 1
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


def new_job_id() -> str:
    return f"pdf_{uuid.uuid4().hex[:16]}"


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def parse_job_hash(data: dict[str, str]) -> JobRecord:
    """Build a JobRecord from the string fields of a job hash."""
    return JobRecord(
        job_id=data["job_id"],
        status=JobState(data.get("status", JobState.QUEUED.value)),
        stage=IngestionStage(data.get("stage", IngestionStage.QUEUED.value)),
        progress=int(data.get("progress", 0)),
        payload=JobPayload.model_validate_json(data["payload"]),
        result=json.loads(data["result"]) if data.get("result") else None,
        failure_reason=data.get("failure_reason") or None,
        created_at=_parse_dt(data.get("created_at")) or _now(),
        started_at=_parse_dt(data.get("started_at")),
        finished_at=_parse_dt(data.get("finished_at")),
        heartbeat_at=_parse_dt(data.get("heartbeat_at")),
        attempt=int(data.get("attempt", 0)),
        stalled_count=int(data.get("stalled_count", 0)),
    )


class JobQueue:
    """Durable at-least-once work queue with progress, status lookup and stall requeue."""

    def __init__(self, redis_client, arq_pool, ttl_seconds: int | None = None, queue_name: str | None = None):
        self.redis = redis_client
        self.arq_pool = arq_pool
        self.ttl_seconds = ttl_seconds or settings.JOB_TTL_SECONDS
        self.queue_name = queue_name or settings.QUEUE_NAME

    async def enqueue(self, payload: JobPayload) -> str:
        """Create a new job for the payload and hand it to the workers."""
        job_id = new_job_id()
        now = _now().isoformat()
        await self.redis.hset(
            job_key(job_id),
            mapping={
                "job_id": job_id,
                "status": JobState.QUEUED.value,
                "stage": IngestionStage.QUEUED.value,
                "progress": "0",
                "payload": payload.model_dump_json(),
                "created_at": now,
                "heartbeat_at": now,
                "attempt": "0",
                "stalled_count": "0",
            },
        )
        await self.redis.expire(job_key(job_id), self.ttl_seconds)
        await self._dispatch(job_id, payload, attempt=0)
        logger.info("Enqueued job", job_id=job_id, content_hash=payload.content_hash)
        return job_id

    async def _dispatch(self, job_id: str, payload: JobPayload, attempt: int) -> None:
        await self.arq_pool.enqueue_job(
            PROCESS_PDF_FUNCTION,
            job_id=job_id,
            payload=payload.model_dump(),
            attempt=attempt,
            _job_id=f"{job_id}:{attempt}",
            _queue_name=self.queue_name,
        )

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        data = await self.redis.hgetall(job_key(job_id))
        if not data:
            return None
        return parse_job_hash(data)

    async def _compare_and_set(self, job_id: str, expected: dict[str, str], mapping: dict[str, str]) -> bool:
        """Write `mapping` only while every `expected` field still holds its value. Atomic in Redis."""
        args: list[str] = [str(len(expected))]
        for field, value in list(expected.items()) + list(mapping.items()):
            args.extend((field, value))
        written = await self.redis.eval(COMPARE_AND_SET_SCRIPT, 1, job_key(job_id), *args)
        return bool(written)

    async def _update(self, job_id: str, attempt: int, fields: dict[str, Any]) -> bool:
        """Writes from an attempt superseded by a stall requeue are dropped."""
        mapping = {k: v if isinstance(v, str) else str(v) for k, v in fields.items() if v is not None}
        mapping["heartbeat_at"] = _now().isoformat()
        if not await self._compare_and_set(job_id, {"attempt": str(attempt)}, mapping):
            logger.warning("Ignoring update from superseded attempt or expired job", job_id=job_id, attempt=attempt)
            return False
        return True

    async def mark_active(self, job_id: str, attempt: int) -> bool:
        return await self._update(
            job_id,
            attempt,
            {"status": JobState.ACTIVE.value, "started_at": _now().isoformat()},
        )

    async def update_progress(
        self,
        job_id: str,
        attempt: int,
        stage: IngestionStage,
        progress: int,
        message: str | None = None,
    ) -> bool:
        return await self._update(
            job_id,
            attempt,
            {"stage": stage.value, "progress": max(0, min(100, progress)), "message": message},
        )

    async def mark_completed(self, job_id: str, attempt: int, result: dict[str, Any]) -> bool:
        return await self._update(
            job_id,
            attempt,
            {
                "status": JobState.COMPLETED.value,
                "stage": IngestionStage.DONE.value,
                "progress": 100,
                "result": json.dumps(result),
                "finished_at": _now().isoformat(),
            },
        )

    async def mark_failed(self, job_id: str, attempt: int, reason: str) -> bool:
        return await self._update(
            job_id,
            attempt,
            {
                "status": JobState.FAILED.value,
                "stage": IngestionStage.FAILED.value,
                "failure_reason": reason[:2000],
                "finished_at": _now().isoformat(),
            },
        )

    async def requeue_stalled(
        self,
        stalled_interval: int | None = None,
        max_stalled_count: int | None = None,
        now: datetime | None = None,
    ) -> tuple[list[str], list[JobRecord]]:
        """
        Requeue active jobs without a heartbeat for `stalled_interval` seconds.

        Returns (requeued job ids, jobs failed for exceeding the stall budget).
        """
        stalled_interval = stalled_interval or settings.JOB_STALLED_INTERVAL
        if max_stalled_count is None:
            max_stalled_count = settings.JOB_MAX_STALLED_COUNT
        now = now or _now()

        requeued: list[str] = []
        failed: list[JobRecord] = []
        async for key in self.redis.scan_iter(match=f"{JOB_KEY_PREFIX}*", count=100):
            data = await self.redis.hgetall(key)
            if not data or data.get("status") != JobState.ACTIVE.value:
                continue
            job = parse_job_hash(data)
            heartbeat = job.heartbeat_at or job.started_at or job.created_at
            if (now - heartbeat).total_seconds() < stalled_interval:
                continue

            # Only act on the state this sweep read; a late heartbeat or a
            # concurrent sweep wins
            expected = {"status": JobState.ACTIVE.value, "attempt": str(job.attempt)}
            if "heartbeat_at" in data:
                expected["heartbeat_at"] = data["heartbeat_at"]

            if job.stalled_count >= max_stalled_count:
                reason = f"Stalled: no progress for {stalled_interval}s after {job.stalled_count} requeues"
                marked = await self._compare_and_set(
                    job.job_id,
                    expected,
                    {
                        "status": JobState.FAILED.value,
                        "stage": IngestionStage.FAILED.value,
                        "failure_reason": reason,
                        "finished_at": now.isoformat(),
                    },
                )
                if not marked:
                    logger.info("Stalled job changed during sweep, skipping", job_id=job.job_id)
                    continue
                job.failure_reason = reason
                failed.append(job)
                logger.error("Job failed after repeated stalls", job_id=job.job_id, stalled_count=job.stalled_count)
                continue

            attempt = job.attempt + 1
            claimed = await self._compare_and_set(
                job.job_id,
                expected,
                {
                    "status": JobState.QUEUED.value,
                    "stage": IngestionStage.QUEUED.value,
                    "progress": "0",
                    "attempt": str(attempt),
                    "stalled_count": str(job.stalled_count + 1),
                    "heartbeat_at": now.isoformat(),
                },
            )
            if not claimed:
                logger.info("Stalled job changed during sweep, skipping", job_id=job.job_id)
                continue
            await self._dispatch(job.job_id, job.payload, attempt=attempt)
            requeued.append(job.job_id)
            logger.warning("Requeued stalled job", job_id=job.job_id, attempt=attempt)
        return requeued, failed
