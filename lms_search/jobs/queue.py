"""
Redis-backed job queue with at-least-once delivery

Jobs are pushed onto a per-type list and atomically moved to a processing list
while a worker runs them. Failed jobs are pushed back for redelivery until they
run out of attempts, then parked on a dead-letter list.
"""

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import redis

from ..search.config import SearchConfig

logger = logging.getLogger(__name__)

# Indexing jobs
FULL_SYNC = "full-sync"
INCREMENTAL_SYNC = "incremental-sync"
UPDATE_SUGGESTIONS = "update-suggestions"
OPTIMIZE_INDICES = "optimize-indices"
REINDEX = "reindex"

# Analytics jobs
PROCESS_SEARCH_QUERY = "process-search-query"
PROCESS_RESULT_CLICK = "process-result-click"
GENERATE_DAILY_ANALYTICS = "generate-daily-analytics"
UPDATE_PERSONALIZATION = "update-personalization"
GENERATE_SEARCH_INSIGHTS = "generate-search-insights"
OPTIMIZE_SUGGESTIONS = "optimize-suggestions"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    DEAD = "dead"


@dataclass
class Job:
    id: str
    job_type: str
    payload: Dict[str, Any]
    state: JobState = JobState.PENDING
    attempts: int = 0
    progress: int = 0
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_error: Optional[str] = None
    result: Any = None

    def to_json(self) -> str:
        data = asdict(self)
        data["state"] = self.state.value
        return json.dumps(data, default=str)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        data["state"] = JobState(data.get("state", JobState.PENDING.value))
        return cls(**data)


JobHandler = Callable[[Job], Any]


class JobQueue:
    """Durable job queue on Redis lists"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "lms_search:jobs:",
                 max_attempts: Optional[int] = None, poll_timeout: Optional[int] = None):
        if redis_client is None:
            raise ValueError("JobQueue requires a Redis client")
        self.redis_client = redis_client
        self.prefix = key_prefix
        self.max_attempts = max_attempts or SearchConfig.JOB_MAX_ATTEMPTS
        self.poll_timeout = poll_timeout or SearchConfig.JOB_POLL_TIMEOUT

    def _queue_key(self, job_type: str) -> str:
        return f"{self.prefix}queue:{job_type}"

    def _processing_key(self, job_type: str) -> str:
        return f"{self.prefix}processing:{job_type}"

    def _dead_letter_key(self, job_type: str) -> str:
        return f"{self.prefix}dead:{job_type}"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}job:{job_id}"

    def _save(self, job: Job, ttl: Optional[int] = None) -> None:
        if ttl:
            self.redis_client.setex(self._job_key(job.id), ttl, job.to_json())
        else:
            self.redis_client.set(self._job_key(job.id), job.to_json())

    def enqueue(self, job_type: str, payload: Dict[str, Any]) -> str:
        """Persist a job and push it onto its queue, returning the job id"""
        job = Job(id=str(uuid.uuid4()), job_type=job_type, payload=payload)
        self._save(job)
        self.redis_client.lpush(self._queue_key(job_type), job.id)
        logger.debug(f"Enqueued {job_type} job {job.id}")
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        raw = self.redis_client.get(self._job_key(job_id))
        return Job.from_json(raw) if raw else None

    def report_progress(self, job_id: str, percent: int) -> None:
        """Record job progress; progress never moves backwards"""
        job = self.get_job(job_id)
        if job is None:
            return
        percent = max(0, min(100, int(percent)))
        if percent > job.progress:
            job.progress = percent
            self._save(job)

    def queue_length(self, job_type: str) -> int:
        return int(self.redis_client.llen(self._queue_key(job_type)))

    def process_next(self, job_type: str, handler: JobHandler, timeout: Optional[int] = None) -> Optional[Job]:
        """
        Run at most one job of a type

        Args:
            job_type: Queue to take the job from
            handler: Callable receiving the Job; its return value is stored as the result
            timeout: Seconds to block waiting for a job (0 blocks forever, None uses the default)

        Returns:
            The processed Job, or None if the queue was empty
        """
        queue_key = self._queue_key(job_type)
        processing_key = self._processing_key(job_type)
        job_id = self.redis_client.blmove(
            queue_key, processing_key, self.poll_timeout if timeout is None else timeout, "RIGHT", "LEFT"
        )
        if job_id is None:
            return None

        job = self.get_job(job_id)
        if job is None:
            logger.warning(f"Dropping {job_type} job {job_id} with no stored payload")
            self.redis_client.lrem(processing_key, 1, job_id)
            return None

        job.attempts += 1
        job.state = JobState.RUNNING
        job.started_at = datetime.utcnow().isoformat()
        self._save(job)

        try:
            result = handler(job)
        except Exception as e:
            job = self.get_job(job.id) or job
            job.last_error = str(e)
            if job.attempts >= self.max_attempts:
                job.state = JobState.DEAD
                self._save(job)
                self.redis_client.lpush(self._dead_letter_key(job_type), job.id)
                logger.error(f"{job_type} job {job.id} failed permanently after {job.attempts} attempts: {e}")
            else:
                job.state = JobState.PENDING
                self._save(job)
                self.redis_client.lpush(queue_key, job.id)
                logger.warning(f"{job_type} job {job.id} failed (attempt {job.attempts}), requeued: {e}")
            self.redis_client.lrem(processing_key, 1, job.id)
            return job

        job = self.get_job(job.id) or job
        job.state = JobState.COMPLETED
        job.progress = 100
        job.completed_at = datetime.utcnow().isoformat()
        job.result = result
        self._save(job, ttl=SearchConfig.JOB_RESULT_TTL)
        self.redis_client.lrem(processing_key, 1, job.id)
        logger.debug(f"{job_type} job {job.id} completed")
        return job

    def consume(self, job_type: str, handler: JobHandler, stop_event: Optional[threading.Event] = None) -> None:
        """Process jobs of a type until the stop event is set"""
        stop_event = stop_event or threading.Event()
        self.recover_stalled(job_type)
        logger.info(f"Consuming {job_type} jobs")
        while not stop_event.is_set():
            try:
                self.process_next(job_type, handler)
            except redis.RedisError as e:
                logger.error(f"Queue error while consuming {job_type}: {e}")
                stop_event.wait(self.poll_timeout)

    def recover_stalled(self, job_type: str) -> int:
        """Return jobs left in the processing list by a crashed worker to the queue"""
        recovered = 0
        while self.redis_client.lmove(self._processing_key(job_type), self._queue_key(job_type), "RIGHT", "RIGHT"):
            recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} stalled {job_type} jobs")
        return recovered
