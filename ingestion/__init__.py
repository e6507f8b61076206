"""
ETL execution engine and its Omie collaborators.

Modules:
    retry: RetryPolicy and RetryExecutor (bounded exponential backoff)
    batching: BatchScheduler (partitioning, bounded concurrency, pacing)
    history: ExecutionHistoryStore (durable run records)
    runner: ETLRunner orchestrator, RunConfig and RunResult
    base: Contracts for data sources and load sinks
    checkpoint: Watermark filtering and checkpoint resolution for incremental runs
    pipeline: Omie source/normalizer/sink wiring per entity
    scheduler: APScheduler integration for recurring executions

Subpackages:
    extractors: Omie API extractor
    transformers: Record normalization and validation
    loaders: SQL loader with idempotent upserts

Usage:
    from ingestion.history import ExecutionHistoryStore
    from ingestion.pipeline import build_pipeline
    from ingestion.runner import ETLRunner, RunConfig

    pipeline = build_pipeline("movimentos_financeiros", async_session_maker)
    runner = ETLRunner(ExecutionHistoryStore(async_session_maker))
    result = await runner.run(
        pipeline.source, pipeline.transform, pipeline.sink,
        config=RunConfig.from_settings(batch_size=200)
    )

    print(f"{result.status.value}: {result.items_processed} processed, {result.items_failed} failed")

Error Handling:
    Every error carries an ErrorKind from core.exceptions. Transient errors
    are retried, permanent ones fail the item, fatal ones fail the run.
"""

__all__ = [
    "RetryPolicy",
    "RetryExecutor",
    "BatchScheduler",
    "ExecutionHistoryStore",
    "ETLRunner",
    "RunConfig",
    "RunResult",
    "DataSource",
    "LoadSink",
    "CheckpointFilter",
]
