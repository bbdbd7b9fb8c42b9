"""
ExamForge - Job Queue
Durable typed jobs on an rq queue, with bounded retries and exponential backoff.
"""
import asyncio
import functools
import logging
from typing import Optional

from redis import Redis
from rq import Queue, Retry

from examforge.core.config import Settings
from examforge.core.constants import JobName

logger = logging.getLogger(__name__)

# Function every job executes; it dispatches on the job name.
WORKER_FUNC = "examforge.jobs.worker.perform"


def retry_policy(attempts: int, backoff: float) -> Optional[Retry]:
    """
    ``attempts`` total runs, waiting ``backoff * 2**n`` seconds before
    retry ``n``. A single attempt means no retry.
    """
    retries = max(attempts - 1, 0)
    if retries == 0:
        return None
    return Retry(max=retries, interval=[int(backoff * 2 ** i) or 1 for i in range(retries)])


class JobQueue:
    """Enqueue side of the job queue, usable from async code."""

    def __init__(self, queue: Queue, job_timeout: int = 600):
        self.queue = queue
        self.job_timeout = job_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobQueue":
        connection = Redis.from_url(settings.REDIS_URL)
        return cls(
            Queue(settings.JOB_QUEUE_NAME, connection=connection),
            job_timeout=settings.JOB_TIMEOUT_SECONDS,
        )

    @property
    def connection(self) -> Redis:
        return self.queue.connection

    def enqueue_sync(
        self,
        name: JobName | str,
        data: dict,
        attempts: int = 3,
        backoff: float = 1,
    ) -> str:
        name = JobName(name).value
        job = self.queue.enqueue(
            WORKER_FUNC,
            name,
            data,
            retry=retry_policy(attempts, backoff),
            job_timeout=self.job_timeout,
            description=f"{name} {data}",
        )
        logger.info("Enqueued %s as %s", name, job.id)
        return job.id

    async def enqueue(
        self,
        name: JobName | str,
        data: dict,
        attempts: int = 3,
        backoff: float = 1,
    ) -> str:
        """Enqueue without blocking the event loop; returns the job id."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(self.enqueue_sync, name, data, attempts, backoff),
        )

    def close(self) -> None:
        self.connection.close()
