"""
In-process background job runner.

The maintenance jobs act on this process's rooms and rate limit counters,
so the API lifespan starts them as asyncio tasks next to the app and
cancels them on shutdown.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable

from nexacore.infrastructure.observability.logging import get_logger
from nexacore.jobs.presence_cleanup_job import start_presence_cleanup_scheduler
from nexacore.jobs.rate_limit_sweep_job import start_rate_limit_sweep_scheduler

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "presence_cleanup": start_presence_cleanup_scheduler,
    "rate_limit_sweep": start_rate_limit_sweep_scheduler,
}


def _normalize(job_name: str) -> str:
    name = job_name.strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )
    return name


async def run_worker(job_name: str) -> None:
    """Run the requested background job until it returns or is cancelled."""
    name = _normalize(job_name)
    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def start_background_jobs(job_names: Iterable[str]) -> list[asyncio.Task]:
    """Schedule each named job on the running loop."""
    names = [_normalize(job_name) for job_name in job_names]
    tasks = [asyncio.create_task(run_worker(name), name=f"job:{name}") for name in names]
    logger.info("Background jobs started", jobs=names)
    return tasks


async def stop_background_jobs(tasks: list[asyncio.Task]) -> None:
    """Cancel job tasks and wait for them to finish."""
    for task in tasks:
        task.cancel()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results):
        if isinstance(result, Exception):
            logger.error(
                "Background job failed",
                job=task.get_name(),
                error=str(result),
                error_type=type(result).__name__,
            )
    logger.info("Background jobs stopped", count=len(tasks))
