"""
ExamForge - Background Worker
rq worker process running the async job handlers on one persistent event loop.

Usage:
    examforge-worker
"""
import asyncio
import logging
from typing import Optional

from rq import SimpleWorker

from examforge.core.config import get_settings
from examforge.core.context import build_context
from examforge.core.telemetry import configure_logging, init_telemetry
from examforge.jobs.runner import JobRunner

logger = logging.getLogger(__name__)

_runner: Optional[JobRunner] = None
_loop: Optional[asyncio.AbstractEventLoop] = None


def install(runner: JobRunner, loop: asyncio.AbstractEventLoop) -> None:
    """Bind the runner and loop that :func:`perform` executes jobs on."""
    global _runner, _loop
    _runner = runner
    _loop = loop


def perform(name: str, data: dict) -> dict:
    """Entry point of every enqueued job."""
    if _runner is None or _loop is None:
        raise RuntimeError("Worker is not initialized; run it with `examforge-worker`")
    return _loop.run_until_complete(_runner.run(name, data))


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    init_telemetry(settings)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    context = build_context(settings)
    install(JobRunner(context), loop)

    # Jobs run in this process so they share the loop and its connections.
    worker = SimpleWorker([context.queue.queue], connection=context.queue.connection)
    logger.info("Worker listening on queue %s", settings.JOB_QUEUE_NAME)
    try:
        # The scheduler moves retried jobs back onto the queue after their backoff
        worker.work(with_scheduler=True)
    finally:
        loop.run_until_complete(context.close())
        loop.close()


if __name__ == "__main__":
    main()
