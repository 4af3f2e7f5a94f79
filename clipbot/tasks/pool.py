import threading

import structlog

from clipbot.core.queue import JobQueue, QueuedJob
from clipbot.tasks.download import DownloadPipeline, PipelineResult

logger = structlog.get_logger()


class LeaseHeartbeat:
    """Keeps a dequeued entry leased while its pipeline runs."""

    def __init__(self, queue: JobQueue, job: QueuedJob, interval: float) -> None:
        self.queue = queue
        self.job = job
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._beat, name=f"heartbeat-{job.job_id[:8]}", daemon=True
        )

    def _beat(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                if not self.queue.extend_lease(self.job):
                    logger.warning("lease_lost", job_id=self.job.job_id)
                    return
            except Exception as e:
                logger.error("lease_extend_failed", job_id=self.job.job_id, error=str(e))

    def __enter__(self) -> "LeaseHeartbeat":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        self._thread.join()


class WorkerPool:
    """Fixed number of worker threads competing for queue entries."""

    def __init__(
        self,
        queue: JobQueue,
        pipeline: DownloadPipeline,
        concurrency: int = 2,
        poll_interval: float = 1.0,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval or max(queue.lease_timeout / 3, 1)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        for slot in range(self.concurrency):
            thread = threading.Thread(target=self._run_slot, args=(slot,), name=f"worker-{slot}")
            thread.start()
            self._threads.append(thread)
        logger.info("worker_pool_started", concurrency=self.concurrency)

    def stop(self) -> None:
        """Stop dequeuing. In-flight jobs run to completion."""
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)
        logger.info("worker_pool_stopped")

    def _run_slot(self, slot: int) -> None:
        log = logger.bind(slot=slot)
        log.info("worker_ready", queue=self.queue.name)

        while not self._stop.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_interval)
                if job is not None:
                    self.process(job)
            except Exception as e:
                log.error("worker_error", error=str(e))
                self._stop.wait(5)

    def process(self, job: QueuedJob) -> PipelineResult | None:
        """Run the pipeline for one entry and settle it on the queue."""
        try:
            with LeaseHeartbeat(self.queue, job, self.heartbeat_interval):
                result = self.pipeline.run(job)
        except Exception as e:
            logger.error("pipeline_crashed", job_id=job.job_id, error=str(e))
            self.queue.fail(job, f"{type(e).__name__}: {e}", retryable=True)
            return None

        if result.should_retry:
            self.queue.fail(job, result.error.message, retryable=True)
        elif result.status == "failed":
            self.queue.fail(job, result.error.message, retryable=False)
        else:
            self.queue.ack(job)
        return result
