"""FIFO serialization of engine operations.

The engine holds one mutable in-memory index and is not safe for concurrent
use. Every tool call that touches it is submitted here as a task; a single
worker drains the channel and runs tasks one at a time in submission order.
Each submitter gets its own future, so outcomes never cross between tasks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from loguru import logger

from .metrics import MetricsAccumulator

T = TypeVar("T")


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    # Failures are logged by the worker, not by asyncio on garbage collection
    if not future.cancelled():
        future.exception()


@dataclass
class QueuedTask(Generic[T]):
    """A deferred operation and the slot its outcome is delivered to."""

    operation: Callable[[], Awaitable[T]]
    result: asyncio.Future[T]
    label: str = field(default="operation")


class OperationQueue:
    """Single-consumer task runner guaranteeing at most one in-flight operation.

    Guarantees:
        - Tasks start in the order `run` was called.
        - A task starts only after the previous one has settled.
        - A failing task is counted in the shared error metric, re-raised to its own
          caller only, and never stops later tasks from running.
        - A caller that stops waiting (timeout, cancellation) does not cancel its
          task; the task runs to completion and the queue advances normally.
    """

    def __init__(self, metrics: MetricsAccumulator) -> None:
        self._metrics = metrics
        self._channel: asyncio.Queue[QueuedTask[Any]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._running: QueuedTask[Any] | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Tasks waiting to start (excludes the one running)."""
        return self._channel.qsize()

    @property
    def busy(self) -> bool:
        return self._running is not None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._drain(), name="operation-queue"
            )

    def submit(
        self, operation: Callable[[], Awaitable[T]], label: str = "operation"
    ) -> asyncio.Future[T]:
        """Enqueue without waiting and return the future that will hold the outcome."""
        if self._closed:
            raise RuntimeError("OperationQueue is closed")
        self._ensure_worker()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_mark_retrieved)
        self._channel.put_nowait(QueuedTask(operation, future, label))
        return future

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        """Run `operation` exclusively against the engine and return its result.

        Raises:
            Exception: Whatever `operation` raised, after it has been counted
        """
        future = self.submit(operation, label)
        # Shield so that a caller giving up does not cancel the queued work
        return await asyncio.shield(future)

    async def _drain(self) -> None:
        while True:
            task = await self._channel.get()
            self._running = task
            try:
                result = await task.operation()
            except asyncio.CancelledError as exc:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    if not task.result.done():
                        task.result.cancel()
                    raise
                # Cancelled from inside the operation: a failure of this task only
                failure = RuntimeError(f"{task.label} was cancelled")
                failure.__cause__ = exc
                self._fail(task, failure)
            except Exception as exc:
                self._fail(task, exc)
            except BaseException:
                if not task.result.done():
                    task.result.cancel()
                raise
            else:
                if not task.result.done():
                    task.result.set_result(result)
            finally:
                self._running = None
                self._channel.task_done()

    def _fail(self, task: QueuedTask[Any], exc: BaseException) -> None:
        self._metrics.record_error()
        logger.opt(exception=exc).error(f"Queued {task.label} failed: {exc}")
        if not task.result.done():
            task.result.set_exception(exc)

    async def join(self) -> None:
        """Wait until every submitted task has settled."""
        await self._channel.join()

    async def close(self) -> None:
        """Finish queued work, then stop the worker."""
        self._closed = True
        if self._worker is None:
            return
        await self._channel.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
