"""
Batch partitioning and bounded-concurrency dispatch.

Batches are dispatched in order under an asyncio semaphore. The first
``max_concurrency`` batches start immediately; every later batch waits for a
free slot and then for the inter-batch delay, which paces the downstream API
without slowing batches that are already running.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
import logging

from core.exceptions import BatchSchedulerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Batch:
    """Ordered slice of the input set"""
    index: int
    items: Sequence[Any]
    offset: int = 0

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class BatchResult:
    """Success/failure tally for one batch"""
    batch_index: int
    succeeded: int = 0
    failed: int = 0
    inserted: int = 0
    updated: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    def add_success(self, created: Optional[bool] = None) -> None:
        self.succeeded += 1
        if created is True:
            self.inserted += 1
        elif created is False:
            self.updated += 1


@dataclass
class SchedulerResult:
    """Aggregate over every completed batch"""
    total_batches: int = 0
    dispatched_batches: int = 0
    completed_batches: int = 0
    succeeded: int = 0
    failed: int = 0
    inserted: int = 0
    updated: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    def add(self, batch_result: BatchResult) -> None:
        self.completed_batches += 1
        self.succeeded += batch_result.succeeded
        self.failed += batch_result.failed
        self.inserted += batch_result.inserted
        self.updated += batch_result.updated
        self.errors.extend(batch_result.errors)


BatchWorker = Callable[[Batch], Awaitable[BatchResult]]


class BatchScheduler:
    """
    Partition an input set and drive it through a worker under a concurrency cap.

    Failure semantics:
    - Item failures are the worker's business and arrive inside BatchResult
    - A worker that raises is a scheduler-level failure: dispatch stops and
      in-flight batches are cancelled; the raised BatchSchedulerError carries
      the aggregate of the batches that completed
    - Task cancellation cancels in-flight batches and propagates
    - A set cancel_event stops new dispatches; in-flight batches finish and the
      result comes back with cancelled=True
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._sleep = sleep

    @staticmethod
    def partition(items: Sequence[Any], batch_size: int) -> List[Batch]:
        """Split items into consecutive batches of at most batch_size"""
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        return [
            Batch(index=i, items=items[start:start + batch_size], offset=start)
            for i, start in enumerate(range(0, len(items), batch_size))
        ]

    @staticmethod
    def expected_batches(total_items: int, batch_size: int) -> int:
        return math.ceil(total_items / batch_size) if total_items else 0

    async def run(
        self,
        items: Sequence[Any],
        batch_size: int,
        max_concurrency: int,
        inter_batch_delay: float,
        worker: BatchWorker,
        cancel_event: Optional[asyncio.Event] = None
    ) -> SchedulerResult:
        """
        Dispatch every batch of ``items`` to ``worker``.

        Args:
            items: Input set, already extracted
            batch_size: Maximum items per batch
            max_concurrency: Maximum simultaneously running batches
            inter_batch_delay: Seconds to wait before dispatching a batch that
                had to wait for a free slot
            worker: Coroutine processing one batch
            cancel_event: Optional run-level cancellation signal

        Returns:
            SchedulerResult with exact counts regardless of completion order
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        batches = self.partition(items, batch_size)
        result = SchedulerResult(total_batches=len(batches))

        if not batches:
            logger.info("No items to process, nothing dispatched")
            return result

        semaphore = asyncio.Semaphore(max_concurrency)
        aggregate_lock = asyncio.Lock()
        tasks: List[asyncio.Task] = []
        worker_failures: List[BaseException] = []

        async def _run_batch(batch: Batch) -> None:
            try:
                batch_result = await worker(batch)
            except Exception as e:
                worker_failures.append(e)
                raise
            finally:
                semaphore.release()

            async with aggregate_lock:
                result.add(batch_result)

            logger.debug(
                f"Batch {batch.index + 1}/{len(batches)} finished: "
                f"{batch_result.succeeded} succeeded, {batch_result.failed} failed"
            )

        def _cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        try:
            for batch in batches:
                if worker_failures:
                    break

                if _cancelled():
                    result.cancelled = True
                    break

                await semaphore.acquire()

                if not worker_failures and batch.index >= max_concurrency and inter_batch_delay > 0:
                    await self._sleep(inter_batch_delay)

                if worker_failures:
                    semaphore.release()
                    break

                if _cancelled():
                    semaphore.release()
                    result.cancelled = True
                    break

                tasks.append(asyncio.create_task(
                    _run_batch(batch), name=f"etl-batch-{batch.index}"
                ))
                result.dispatched_batches += 1

            await asyncio.gather(*tasks)

        except asyncio.CancelledError:
            logger.warning(f"Batch dispatch cancelled with {len(tasks)} batch(es) dispatched")
            await self._abort(tasks)
            raise

        except Exception as e:
            await self._abort(tasks)
            raise BatchSchedulerError(
                "Batch worker failed, run aborted",
                context={
                    "total_batches": len(batches),
                    "dispatched_batches": result.dispatched_batches,
                    "completed_batches": result.completed_batches
                },
                result=result,
                original_exception=e
            )

        if result.cancelled:
            logger.warning(
                f"Cancellation requested: {result.dispatched_batches}/{len(batches)} "
                f"batch(es) dispatched"
            )

        return result

    @staticmethod
    async def _abort(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
