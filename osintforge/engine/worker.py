"""
Module worker: bounded pool of asyncio workers draining the job queue.

Each worker takes the highest-priority job, moves it to running, and runs the
tool in its own task so the JobManager can cancel it. Progress events travel
from the executor over an asyncio.Queue into a pump task that persists them in
order; the pump is drained before the job's terminal transition is written.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Dict, List, Optional, Set, Tuple

from osintforge.data.models import Job
from osintforge.engine.lifecycle import JobManager
from osintforge.errors import OsintError, handle_error
from osintforge.toolkit.models import ExecutionOptions, ProgressEvent
from osintforge.toolkit.registry import ToolRegistry

logger = logging.getLogger(__name__)

_STOP = None


class WorkerPool:
    def __init__(self, manager: JobManager, registry: ToolRegistry, concurrency: int = 5):
        self.manager = manager
        self.registry = registry
        self.concurrency = max(1, concurrency)
        self._queue: "asyncio.PriorityQueue[Tuple[int, int, str]]" = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        self._workers: List[asyncio.Task] = []
        self._running: Dict[str, asyncio.Task] = {}
        self._terminated: Set[str] = set()
        manager.bind_worker(self.enqueue, self)

    @property
    def active_jobs(self) -> List[str]:
        return list(self._running)

    async def start(self, recover: bool = True) -> None:
        if self._workers:
            return
        for index in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._worker_loop(index), name=f"osint-worker-{index}"))
        logger.info(f"[WorkerPool] Started {self.concurrency} workers")
        if recover:
            await self.manager.recover()

    async def stop(self) -> None:
        for task in self._running.values():
            task.cancel()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("[WorkerPool] Stopped")

    async def enqueue(self, job: Job) -> None:
        # PriorityQueue pops the smallest tuple: higher priority first, then FIFO.
        await self._queue.put((-job.priority, next(self._sequence), job.id))

    async def join(self) -> None:
        """Wait until every enqueued job has been processed."""
        await self._queue.join()

    def terminate(self, job_id: str) -> bool:
        """Cancel the live execution of ``job_id``. Returns False if none is running."""
        self._terminated.add(job_id)
        task = self._running.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _worker_loop(self, index: int) -> None:
        while True:
            _, _, job_id = await self._queue.get()
            try:
                await self.process(job_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"[WorkerPool] worker-{index} crashed on job {job_id}: {exc}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _pump_progress(self, job_id: str, channel: "asyncio.Queue[Optional[ProgressEvent]]") -> None:
        while True:
            event = await channel.get()
            if event is _STOP:
                return
            await self.manager.record_progress(job_id, event.percentage)

    async def process(self, job_id: str) -> None:
        self._terminated.discard(job_id)
        job = await self.manager.start(job_id)
        if job is None:
            return

        executor = self.registry.get(job.tool_name)
        if executor is None:
            await self.manager.fail(job_id, f"No executor registered for tool {job.tool_name}")
            return

        channel: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
        pump = asyncio.create_task(self._pump_progress(job_id, channel))
        execution = asyncio.create_task(executor.execute(job.input, ExecutionOptions(progress=channel)))
        self._running[job_id] = execution
        if job_id in self._terminated:
            execution.cancel()

        try:
            result = await execution
        except asyncio.CancelledError:
            await self._finish_pump(channel, pump)
            if job_id in self._terminated:
                # JobManager.cancel already recorded the cancelled state.
                logger.info(f"[WorkerPool] Job {job_id} terminated")
                return
            raise
        except OsintError as exc:
            await self._finish_pump(channel, pump)
            await self.manager.fail(job_id, exc.message)
        except Exception as exc:
            await self._finish_pump(channel, pump)
            error = handle_error(exc, context=f"Execution failed for {job.tool_name}")
            logger.error(f"[WorkerPool] Unexpected error in job {job_id}: {error.message}", exc_info=True)
            await self.manager.fail(job_id, error.message)
        else:
            await self._finish_pump(channel, pump)
            await self.manager.complete(job_id, result.to_dict())
        finally:
            self._running.pop(job_id, None)
            self._terminated.discard(job_id)

    @staticmethod
    async def _finish_pump(channel: asyncio.Queue, pump: asyncio.Task) -> None:
        channel.put_nowait(_STOP)
        await asyncio.shield(pump)
