from __future__ import annotations

import asyncio
import signal
from typing import Optional

from mediaapp.core.admission import AdmissionGate
from mediaapp.core.config import Settings
from mediaapp.core.db import create_schema
from mediaapp.core.errors import QueueClosed
from mediaapp.core.logging import configure_logging, get_logger, level_from_name
from mediaapp.core.queue import TaskHandler
from mediaapp.core.runtime import Runtime, build_runtime
from mediaapp.domain import SearchTask
from mediaapp.services.ingestion import IngestionEngine

logger = get_logger(component="search_worker")


def make_search_handler(engine: IngestionEngine, gate: AdmissionGate) -> TaskHandler:
    """Queue handler running one search batch inside an admission slot.

    Engine errors propagate so the queue requeues the task.
    """

    async def handle(task: SearchTask) -> None:
        async with gate.slot():
            try:
                report = await engine.ingest_search(task.query, task.page, task.per_page)
            except Exception as exc:
                logger.error("search_task_failed", query=task.query, page=task.page, error=str(exc))
                raise
        logger.info(
            "search_task_completed",
            query=task.query,
            page=report.page,
            per_page=report.per_page,
            photos=len(report.photos),
            skipped=len(report.skipped),
        )

    return handle


async def run_consumers(
    runtime: Runtime,
    stop: asyncio.Event,
    *,
    concurrency: Optional[int] = None,
    consumer_prefix: Optional[str] = None,
    grace_s: Optional[float] = None,
) -> int:
    """Drive consume loops until ``stop`` is set or the broker goes away.

    Returns the process exit status: 0 after a requested stop, 1 when a loop
    ended because the queue connection was lost or it crashed.
    """
    settings = runtime.settings
    concurrency = concurrency or settings.worker_concurrency
    consumer_prefix = consumer_prefix or settings.worker_name
    grace_s = settings.shutdown_grace_s if grace_s is None else grace_s

    handler = make_search_handler(runtime.engine, runtime.gate)
    loops = [
        asyncio.create_task(
            runtime.queue.consume(handler, stop=stop, consumer=f"{consumer_prefix}-{index}"),
            name=f"consumer-{consumer_prefix}-{index}",
        )
        for index in range(concurrency)
    ]
    stop_waiter = asyncio.create_task(stop.wait())
    logger.info("worker_started", queue=runtime.queue.name, concurrency=concurrency)

    try:
        done, _ = await asyncio.wait({stop_waiter, *loops}, return_when=asyncio.FIRST_COMPLETED)
        if stop_waiter not in done:
            stop.set()
        _, pending = await asyncio.wait(loops, timeout=grace_s)
        if pending:
            logger.warning("worker_grace_period_expired", cancelled=len(pending), grace_s=grace_s)
    finally:
        stop_waiter.cancel()
        for task in loops:
            task.cancel()
        await asyncio.gather(stop_waiter, *loops, return_exceptions=True)

    exit_code = 0
    for task in loops:
        if task.cancelled():
            continue
        exc = task.exception()
        if isinstance(exc, QueueClosed):
            logger.error("worker_queue_closed", consumer=task.get_name(), error=str(exc))
            exit_code = 1
        elif exc is not None:
            logger.error("worker_consumer_crashed", consumer=task.get_name(), error=repr(exc))
            exit_code = 1
    logger.info("worker_stopped", exit_code=exit_code)
    return exit_code


async def run_worker(settings: Settings, *, runtime: Optional[Runtime] = None) -> int:
    """Worker process entry point: consume until SIGINT/SIGTERM."""
    configure_logging(level=level_from_name(settings.log_level))
    runtime = runtime or build_runtime(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-main thread or Windows
            logger.warning("worker_signal_handler_unavailable", signal=signum.name)

    try:
        if settings.database_auto_create:
            await create_schema(runtime.db_engine)
        return await run_consumers(runtime, stop)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)
        await runtime.aclose()


__all__ = ["make_search_handler", "run_consumers", "run_worker"]
