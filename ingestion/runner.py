"""
ETL Runner - Orchestrates Extract, Transform, Load for one execution.

This module provides:
- An explicit, immutable RunConfig per execution (settings plus overrides)
- Batch dispatch through BatchScheduler with per-item load retries
- Partial failure support (item failures never abort sibling batches)
- A durable ExecutionHistory record finalized on every exit path
"""

import asyncio
import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from ingestion.base import DataSource, LoadSink
from ingestion.batching import Batch, BatchResult, BatchScheduler
from ingestion.history import ExecutionHistoryStore
from ingestion.retry import RetryExecutor, RetryPolicy
from models.base import ExecutionStatus
from models.execution_history import ExecutionHistory
from core.config import settings
from core.exceptions import (
    ErrorKind,
    ETLException,
    ExtractionError,
    TransformationError,
    LoadError,
    BatchSchedulerError,
    RunCancelledError,
    HistoryPersistenceError,
    error_kind
)

logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class RunConfig:
    """Effective configuration of one execution, resolved at run start"""
    batch_size: int = 500
    max_concurrency: int = 5
    inter_batch_delay: float = 1.0  # seconds
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.inter_batch_delay < 0:
            raise ValueError("inter_batch_delay must be >= 0")

    @classmethod
    def from_settings(cls, **overrides: Any) -> "RunConfig":
        """
        Build from ETL settings; overrides set to None are ignored.

        Accepted overrides: batch_size, max_concurrency, inter_batch_delay,
        retry_attempts, retry_policy.
        """
        overrides = {k: v for k, v in overrides.items() if v is not None}

        retry_policy = overrides.pop("retry_policy", None) or RetryPolicy.from_settings()
        retry_attempts = overrides.pop("retry_attempts", None)
        if retry_attempts is not None:
            retry_policy = RetryPolicy(
                max_attempts=retry_attempts,
                initial_delay=retry_policy.initial_delay,
                backoff_multiplier=retry_policy.backoff_multiplier
            )

        values = {
            "batch_size": settings.ETL_BATCH_SIZE,
            "max_concurrency": settings.ETL_MAX_CONCURRENCY,
            "inter_batch_delay": settings.ETL_DELAY_BETWEEN_BATCHES_MS / 1000,
            "retry_policy": retry_policy,
        }
        values.update(overrides)
        return cls(**values)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "max_concurrency": self.max_concurrency,
            "inter_batch_delay": self.inter_batch_delay,
            "retry_policy": self.retry_policy.to_dict(),
        }


@dataclass
class RunResult:
    """Aggregate outcome reported to the caller of ETLRunner.run"""
    execution_id: int
    run_id: str
    status: ExecutionStatus
    items_processed: int = 0
    items_failed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    total_batches: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    duration_seconds: Optional[float] = None
    checkpoint: Optional[datetime] = None
    # Set when the terminal record could not be persisted; distinct from item errors
    persistence_warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "items_inserted": self.items_inserted,
            "items_updated": self.items_updated,
            "total_batches": self.total_batches,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
            "checkpoint": self.checkpoint,
            "persistence_warning": self.persistence_warning,
        }


def derive_status(succeeded: int, failed: int) -> ExecutionStatus:
    """Terminal status of a run that dispatched every batch"""
    if failed == 0:
        return ExecutionStatus.SUCCEEDED
    if succeeded == 0:
        return ExecutionStatus.FAILED
    return ExecutionStatus.PARTIALLY_FAILED


class ETLRunner:
    """
    Production-grade ETL Orchestrator

    Responsibilities:
    - Create and exclusively own the ExecutionHistory record of a run
    - Extract every page, then drive transform/load through the BatchScheduler
    - Retry transient load failures per item with the run's RetryPolicy
    - Persist the counters after every batch, so the record tracks a live run
      and keeps the work of completed batches when the run aborts
    - Finalize the record with exact counts and a distinguishing status

    Error handling:
    - Item-level failures (transform errors, rejected or exhausted loads) are
      counted and recorded; they never escape the batch
    - Fatal errors finalize the record as failed (best effort) and propagate
    - Cancellation through ``cancel_event`` stops new batches, lets in-flight
      batches finish, finalizes as failed and raises RunCancelledError
    - Task cancellation aborts in-flight batches, finalizes as failed and
      re-raises CancelledError
    """

    def __init__(
        self,
        history_store: ExecutionHistoryStore,
        scheduler: Optional[BatchScheduler] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.history_store = history_store
        self.scheduler = scheduler or BatchScheduler(sleep=sleep)
        self._sleep = sleep

    async def run(
        self,
        source: DataSource,
        transform: Transform,
        sink: LoadSink,
        config: Optional[RunConfig] = None,
        execution_type: str = "full_load",
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """
        Run the full pipeline for ``source``.

        Args:
            source: Paginated data source
            transform: Pure item transform; any failure marks the item failed
            sink: Load sink reporting per-item outcomes
            config: Effective configuration (defaults to settings)
            execution_type: Label stored on the history record
            cancel_event: Optional run-level cancellation signal

        Returns:
            RunResult with counts, status and any persistence warning

        Raises:
            HistoryPersistenceError: The history record could not be created
            ExtractionError: The source could not produce the input set
            RunCancelledError: cancel_event was set during the run
            ETLException: Any other run-level failure
        """
        config = config or RunConfig.from_settings()

        try:
            history = await self.history_store.create(
                execution_type=execution_type,
                endpoint=source.source_name,
                batch_size=config.batch_size,
                max_concurrency=config.max_concurrency,
                config_snapshot=config.snapshot()
            )
        except Exception as e:
            raise HistoryPersistenceError(
                "Could not create execution history record",
                context={"execution_type": execution_type, "source_name": source.source_name},
                original_exception=e
            )

        logger.info(
            f"Execution {history.id} ({execution_type}) created for {source.source_name}: "
            f"batch_size={config.batch_size}, max_concurrency={config.max_concurrency}"
        )

        retry = RetryExecutor(config.retry_policy, sleep=self._sleep)

        try:
            # --------------------------------------------------
            # PHASE 1: EXTRACTION
            # --------------------------------------------------
            items = await self._extract(source)

            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError(
                    "Run cancelled before dispatch",
                    context={"execution_id": history.id}
                )

            # --------------------------------------------------
            # PHASE 2: TRANSFORM + LOAD IN BATCHES
            # --------------------------------------------------
            history.transition_to(ExecutionStatus.RUNNING)
            history.total_batches = BatchScheduler.expected_batches(len(items), config.batch_size)
            await self.history_store.update(history)

            outcome = await self.scheduler.run(
                items,
                batch_size=config.batch_size,
                max_concurrency=config.max_concurrency,
                inter_batch_delay=config.inter_batch_delay,
                worker=self._build_worker(transform, sink, retry, history),
                cancel_event=cancel_event
            )

        except asyncio.CancelledError:
            logger.warning(f"Execution {history.id} cancelled")
            await self._finalize_failed(history, "Run cancelled: task was cancelled")
            raise

        except ETLException as e:
            e.context.setdefault("execution_id", history.id)
            logger.error(f"Execution {history.id} failed: {e.message}", extra={"error_context": e.to_dict()})
            details = [e.to_dict()]
            if isinstance(e, BatchSchedulerError) and e.result is not None:
                details.extend(e.result.errors)
            await self._finalize_failed(history, e.message, details)
            raise

        except Exception as e:
            logger.exception(f"Unexpected error in execution {history.id}")
            wrapped = ETLException(
                "Unexpected error in ETL pipeline",
                context={"execution_id": history.id, "source_name": source.source_name},
                original_exception=e,
                kind=ErrorKind.FATAL
            )
            await self._finalize_failed(history, str(e), [wrapped.to_dict()])
            raise wrapped

        # --------------------------------------------------
        # PHASE 3: FINALIZE
        # --------------------------------------------------
        # Counters were advanced batch by batch by the worker
        if outcome.cancelled:
            note = (
                f"Run cancelled: {outcome.completed_batches}/{outcome.total_batches} batches completed, "
                f"{outcome.succeeded} items processed, {outcome.failed} failed"
            )
            await self._finalize_failed(history, note, outcome.errors)
            raise RunCancelledError(
                "Run cancelled",
                context={
                    "execution_id": history.id,
                    "completed_batches": outcome.completed_batches,
                    "items_processed": outcome.succeeded,
                    "items_failed": outcome.failed
                }
            )

        status = derive_status(outcome.succeeded, outcome.failed)
        if status is not ExecutionStatus.SUCCEEDED:
            history.record_errors(
                f"{outcome.failed} of {outcome.succeeded + outcome.failed} items failed",
                outcome.errors
            )
        history.checkpoint = source.checkpoint
        history.transition_to(status)

        persistence_warning = None
        try:
            await self.history_store.update(history)
        except Exception as e:
            persistence_warning = f"Terminal execution record could not be persisted: {e}"
            logger.error(f"Execution {history.id}: {persistence_warning}")

        log = logger.info if status is ExecutionStatus.SUCCEEDED else logger.warning
        log(
            f"Execution {history.id} {status.value} - "
            f"Processed: {outcome.succeeded}, Failed: {outcome.failed}, Batches: {outcome.completed_batches}"
        )

        return RunResult(
            execution_id=history.id,
            run_id=str(history.run_id),
            status=status,
            items_processed=history.items_processed,
            items_failed=history.items_failed,
            items_inserted=history.items_inserted,
            items_updated=history.items_updated,
            total_batches=outcome.total_batches,
            errors=outcome.errors,
            duration_seconds=history.duration_seconds,
            checkpoint=history.checkpoint,
            persistence_warning=persistence_warning
        )

    async def _extract(self, source: DataSource) -> List[Any]:
        logger.info(f"Starting extraction for {source.source_name}")
        try:
            return await source.fetch_all()
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(
                "Extraction failed",
                context={"source_name": source.source_name},
                original_exception=e
            )

    def _build_worker(
        self,
        transform: Transform,
        sink: LoadSink,
        retry: RetryExecutor,
        history: ExecutionHistory
    ) -> Callable[[Batch], Awaitable[BatchResult]]:
        progress_lock = asyncio.Lock()

        async def process_batch(batch: Batch) -> BatchResult:
            result = BatchResult(batch_index=batch.index)

            for position, item in enumerate(batch.items, start=batch.offset):
                try:
                    transformed = self._transform(transform, item)
                    outcome = await retry.execute(
                        functools.partial(self._load_one, sink, transformed, history.run_id),
                        description=f"load of item {position}"
                    )
                    result.add_success(outcome.created)

                except Exception as e:
                    result.failed += 1
                    result.errors.append(self._item_error(e, batch.index, position))
                    if error_kind(e) is ErrorKind.FATAL:
                        # Items this batch already loaded stay on the record
                        await self._record_batch(history, result, progress_lock)
                        raise

            await self._record_batch(history, result, progress_lock)
            return result

        return process_batch

    async def _record_batch(self, history: ExecutionHistory, result: BatchResult, lock: asyncio.Lock) -> None:
        """Add a batch to the record counters and persist them; a failed write is only logged"""
        async with lock:
            history.record_progress(
                processed=result.succeeded,
                failed=result.failed,
                inserted=result.inserted,
                updated=result.updated
            )
            try:
                await self.history_store.update(history)
            except Exception as e:
                logger.warning(
                    f"Execution {history.id}: progress after batch {result.batch_index + 1} not persisted: {e}"
                )

    @staticmethod
    def _transform(transform: Transform, item: Any) -> Any:
        try:
            return transform(item)
        except ETLException:
            raise
        except Exception as e:
            raise TransformationError(
                "Transform failed",
                original_exception=e
            )

    @staticmethod
    async def _load_one(sink: LoadSink, item: Any, run_id: Any) -> Any:
        outcomes = await sink.load([item], run_id=run_id)
        if not outcomes:
            raise LoadError("Load sink reported no outcome for item", kind=ErrorKind.PERMANENT)

        outcome = outcomes[0]
        if not outcome.success:
            raise outcome.error or LoadError("Load sink rejected item", kind=ErrorKind.PERMANENT)
        return outcome

    @staticmethod
    def _item_error(error: BaseException, batch_index: int, position: int) -> Dict[str, Any]:
        if isinstance(error, ETLException):
            detail = error.to_dict()
        else:
            detail = {
                "error_type": type(error).__name__,
                "kind": error_kind(error).value,
                "message": str(error),
            }
        detail["batch_index"] = batch_index
        detail["item_position"] = position
        return detail

    async def _finalize_failed(
        self,
        history: ExecutionHistory,
        summary: str,
        details: Optional[List[Dict[str, Any]]] = None
    ) -> None:
        """Best effort: a failure here is logged, never raised over the original error"""
        try:
            history.record_errors(summary, details)
            if not history.is_terminal:
                history.transition_to(ExecutionStatus.FAILED)
            await self.history_store.update(history)
        except Exception as e:
            logger.error(f"Could not finalize execution {history.id} as failed: {e}")
