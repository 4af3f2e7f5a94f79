"""Durable download queue on top of Redis.

Each entry lives in a hash keyed by job id and moves between a waiting
list and four sorted sets (delayed, active, completed, failed). Every
state change runs inside a WATCH/MULTI transaction, so two workers can
never claim the same entry and a settled entry cannot be settled twice.

A dequeued entry is leased: it carries a random token and a deadline in
the active set. ``ack``/``fail`` with a stale token are ignored. Leases
that expire without being settled count as a retryable failure and are
rescheduled while attempts remain.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

import redis
import structlog

from .config import settings

logger = structlog.get_logger()

LEASE_EXPIRED = "lease expired"


@dataclass
class QueuedJob:
    job_id: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    state: str = "waiting"
    token: str | None = None
    last_error: str | None = None

    @property
    def has_attempts_left(self) -> bool:
        return self.attempt < self.max_attempts


@dataclass
class Retention:
    completed_count: int = 100
    completed_age: int = 24 * 3600
    failed_count: int = 1000
    failed_age: int = 7 * 24 * 3600


@dataclass
class QueueMetrics:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    total: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.total = self.waiting + self.delayed + self.active + self.completed + self.failed

    def as_dict(self) -> dict[str, int]:
        return {
            "waiting": self.waiting,
            "delayed": self.delayed,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "total": self.total,
        }


class JobQueue:
    """At-least-once queue of job payloads keyed by job id."""

    def __init__(
        self,
        client: redis.Redis,
        name: str = "downloads",
        max_attempts: int = 3,
        backoff_base: float = 2,
        lease_timeout: float = 300,
        retention: Retention | None = None,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.lease_timeout = lease_timeout
        self.retention = retention or Retention()
        self.poll_interval = poll_interval
        self._clock = clock

        prefix = f"clipbot:{name}"
        self._waiting = f"{prefix}:waiting"
        self._delayed = f"{prefix}:delayed"
        self._active = f"{prefix}:active"
        self._completed = f"{prefix}:completed"
        self._failed = f"{prefix}:failed"
        self._job_prefix = f"{prefix}:job:"

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) attempt failed."""
        return self.backoff_base * (2 ** (attempt - 1))

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, job_id: str, payload: dict[str, Any]) -> bool:
        """Add a new entry. Returns False if the id is already known."""
        key = self._job_key(job_id)
        now = self._clock()

        def _add(pipe: redis.client.Pipeline) -> bool:
            if pipe.exists(key):
                return False
            pipe.multi()
            pipe.hset(
                key,
                mapping={
                    "payload": json.dumps(payload),
                    "attempts": 0,
                    "max_attempts": self.max_attempts,
                    "state": "waiting",
                    "created_at": now,
                },
            )
            pipe.lpush(self._waiting, job_id)
            return True

        added = self._redis.transaction(_add, key, value_from_callable=True)
        if added:
            logger.info("job_enqueued", job_id=job_id, queue=self.name)
        else:
            logger.info("job_enqueue_skipped", job_id=job_id, reason="duplicate")
        return added

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def dequeue(self, timeout: float = 0) -> QueuedJob | None:
        """Claim the oldest ready entry, polling for up to ``timeout`` seconds."""
        deadline = time.monotonic() + timeout
        while True:
            self._promote_delayed()
            self._reclaim_stalled()

            job = self._claim()
            if job is not None:
                return job

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval, remaining))

    def _claim(self) -> QueuedJob | None:
        token = uuid.uuid4().hex

        def _pop(pipe: redis.client.Pipeline) -> QueuedJob | None:
            job_id = pipe.lindex(self._waiting, -1)
            if job_id is None:
                return None
            key = self._job_key(job_id)
            pipe.watch(key)
            data = pipe.hgetall(key)
            now = self._clock()

            pipe.multi()
            pipe.rpop(self._waiting)
            if not data:
                # Hash trimmed while still listed; drop the orphan id.
                return None

            attempt = int(data.get("attempts", 0)) + 1
            pipe.hset(
                key,
                mapping={
                    "attempts": attempt,
                    "state": "active",
                    "token": token,
                    "started_at": now,
                },
            )
            pipe.zadd(self._active, {job_id: now + self.lease_timeout})
            return QueuedJob(
                job_id=job_id,
                payload=json.loads(data["payload"]),
                attempt=attempt,
                max_attempts=int(data.get("max_attempts", self.max_attempts)),
                state="active",
                token=token,
                last_error=data.get("last_error"),
            )

        job = self._redis.transaction(_pop, self._waiting, value_from_callable=True)
        if job is not None:
            logger.info("job_dequeued", job_id=job.job_id, attempt=job.attempt)
        return job

    def extend_lease(self, job: QueuedJob) -> bool:
        """Push the lease deadline forward. False if the lease was lost."""
        key = self._job_key(job.job_id)

        def _extend(pipe: redis.client.Pipeline) -> bool:
            if pipe.hget(key, "token") != job.token:
                return False
            pipe.multi()
            pipe.zadd(self._active, {job.job_id: self._clock() + self.lease_timeout}, xx=True)
            return True

        return self._redis.transaction(_extend, key, value_from_callable=True)

    def ack(self, job: QueuedJob) -> bool:
        """Mark the entry completed. Ignored if the lease token is stale."""
        key = self._job_key(job.job_id)

        def _complete(pipe: redis.client.Pipeline) -> bool:
            if pipe.hget(key, "token") != job.token:
                return False
            now = self._clock()
            pipe.multi()
            pipe.zrem(self._active, job.job_id)
            pipe.zadd(self._completed, {job.job_id: now})
            pipe.hset(key, mapping={"state": "completed", "finished_at": now})
            pipe.hdel(key, "token")
            return True

        done = self._redis.transaction(_complete, key, value_from_callable=True)
        if done:
            logger.info("job_acked", job_id=job.job_id, attempt=job.attempt)
            self._trim()
        else:
            logger.warning("job_ack_ignored", job_id=job.job_id, reason="stale_lease")
        return done

    def fail(self, job: QueuedJob, error: str, retryable: bool = True) -> str | None:
        """Settle a failed attempt.

        Returns ``"delayed"`` when the entry was rescheduled, ``"failed"``
        when it is final, or None when the lease token is stale.
        """
        state = self._settle_failure(job.job_id, job.token, error, retryable)
        if state is None:
            logger.warning("job_fail_ignored", job_id=job.job_id, reason="stale_lease")
        return state

    def _settle_failure(
        self, job_id: str, token: str | None, error: str, retryable: bool
    ) -> str | None:
        key = self._job_key(job_id)

        def _settle(pipe: redis.client.Pipeline) -> tuple[str, int, float] | None:
            data = pipe.hgetall(key)
            if not data or data.get("state") != "active":
                return None
            if token is not None and data.get("token") != token:
                return None
            if token is None:
                # Reclaim path: only when the lease really expired.
                deadline = pipe.zscore(self._active, job_id)
                if deadline is None or deadline > self._clock():
                    return None

            now = self._clock()
            attempt = int(data.get("attempts", 0))
            max_attempts = int(data.get("max_attempts", self.max_attempts))
            pipe.multi()
            pipe.zrem(self._active, job_id)
            pipe.hdel(key, "token")

            if retryable and attempt < max_attempts:
                delay = self.backoff(attempt)
                pipe.zadd(self._delayed, {job_id: now + delay})
                pipe.hset(key, mapping={"state": "delayed", "last_error": error[:500]})
                return "delayed", attempt, delay

            pipe.zadd(self._failed, {job_id: now})
            pipe.hset(
                key,
                mapping={"state": "failed", "last_error": error[:500], "finished_at": now},
            )
            return "failed", attempt, 0

        outcome = self._redis.transaction(_settle, key, value_from_callable=True)
        if outcome is None:
            return None

        state, attempt, delay = outcome
        if state == "delayed":
            logger.info("job_retry_scheduled", job_id=job_id, attempt=attempt, delay=delay, error=error)
        else:
            logger.error("job_failed_permanently", job_id=job_id, attempt=attempt, error=error)
            self._trim()
        return state

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def _promote_delayed(self) -> None:
        now = self._clock()
        for job_id in self._redis.zrangebyscore(self._delayed, "-inf", now):

            def _promote(pipe: redis.client.Pipeline, job_id: str = job_id) -> None:
                if pipe.zscore(self._delayed, job_id) is None:
                    return
                pipe.multi()
                pipe.zrem(self._delayed, job_id)
                pipe.hset(self._job_key(job_id), "state", "waiting")
                pipe.lpush(self._waiting, job_id)

            self._redis.transaction(_promote, self._delayed)

    def _reclaim_stalled(self) -> None:
        now = self._clock()
        for job_id in self._redis.zrangebyscore(self._active, "-inf", now):
            logger.warning("job_lease_expired", job_id=job_id)
            self._settle_failure(job_id, None, LEASE_EXPIRED, retryable=True)

    def _trim(self) -> int:
        now = self._clock()
        removed = self._trim_set(
            self._completed, self.retention.completed_count, now - self.retention.completed_age
        )
        removed += self._trim_set(
            self._failed, self.retention.failed_count, now - self.retention.failed_age
        )
        return removed

    def _trim_set(self, key: str, keep: int, cutoff: float) -> int:
        expired = set(self._redis.zrangebyscore(key, "-inf", f"({cutoff}"))
        overflow = self._redis.zcard(key) - keep
        if overflow > 0:
            expired.update(self._redis.zrange(key, 0, overflow - 1))
        if not expired:
            return 0

        pipe = self._redis.pipeline()
        pipe.zrem(key, *expired)
        pipe.delete(*(self._job_key(job_id) for job_id in expired))
        pipe.execute()
        logger.debug("queue_trimmed", key=key, removed=len(expired))
        return len(expired)

    def clean(self) -> int:
        """Apply retention now and recover expired leases. Returns entries removed."""
        self._reclaim_stalled()
        return self._trim()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> QueuedJob | None:
        data = self._redis.hgetall(self._job_key(job_id))
        if not data:
            return None
        return QueuedJob(
            job_id=job_id,
            payload=json.loads(data["payload"]),
            attempt=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", self.max_attempts)),
            state=data.get("state", "waiting"),
            token=data.get("token"),
            last_error=data.get("last_error"),
        )

    def metrics(self) -> QueueMetrics:
        pipe = self._redis.pipeline(transaction=False)
        pipe.llen(self._waiting)
        pipe.zcard(self._delayed)
        pipe.zcard(self._active)
        pipe.zcard(self._completed)
        pipe.zcard(self._failed)
        waiting, delayed, active, completed, failed = pipe.execute()
        return QueueMetrics(
            waiting=waiting,
            delayed=delayed,
            active=active,
            completed=completed,
            failed=failed,
        )


_queue: JobQueue | None = None


def get_queue() -> JobQueue:
    """Process-wide queue built from settings."""
    global _queue
    if _queue is None:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        _queue = JobQueue(
            client,
            name=settings.queue_name,
            max_attempts=settings.max_retries,
            backoff_base=settings.retry_delay,
            lease_timeout=settings.lease_timeout,
            retention=Retention(
                completed_count=settings.keep_completed_count,
                completed_age=settings.keep_completed_age,
                failed_count=settings.keep_failed_count,
                failed_age=settings.keep_failed_age,
            ),
            poll_interval=settings.poll_interval,
        )
    return _queue
