import pytest
from unittest.mock import AsyncMock, patch
from ingestion.scheduler import ETLScheduler
from ingestion.runner import RunResult
from models.base import ExecutionStatus


@pytest.mark.asyncio
async def test_scheduler_initialization(session_maker):
    scheduler = ETLScheduler(session_maker=session_maker, interval_minutes=15)
    assert scheduler.scheduler is not None
    assert scheduler.interval_minutes == 15
    assert scheduler.runner is not None


@pytest.mark.asyncio
async def test_scheduler_job_execution(session_maker, make_pipeline, make_source, make_sink):
    pipeline = make_pipeline(make_source([{"id": 1}]), make_sink())
    scheduler = ETLScheduler(session_maker=session_maker)

    with patch("ingestion.scheduler.build_pipeline", return_value=pipeline):
        result = await scheduler.run_etl_job()

    assert result.status == ExecutionStatus.SUCCEEDED
    assert result.items_processed == 1
    assert pipeline.closed

    stored = await scheduler.runner.history_store.get_by_id(result.execution_id)
    assert stored.execution_type == "scheduled"


@pytest.mark.asyncio
async def test_scheduler_job_survives_run_failure(session_maker, make_pipeline, make_source, make_sink):
    pipeline = make_pipeline(make_source([], error=RuntimeError("api down")), make_sink())
    scheduler = ETLScheduler(session_maker=session_maker)

    with patch("ingestion.scheduler.build_pipeline", return_value=pipeline):
        result = await scheduler.run_etl_job()

    assert result is None
    assert pipeline.closed


@pytest.mark.asyncio
async def test_scheduler_passes_scheduled_execution_type(session_maker, make_pipeline, make_source, make_sink):
    pipeline = make_pipeline(make_source([]), make_sink())
    scheduler = ETLScheduler(session_maker=session_maker)
    scheduler.runner.run = AsyncMock(return_value=RunResult(
        execution_id=1, run_id="r", status=ExecutionStatus.SUCCEEDED
    ))

    with patch("ingestion.scheduler.build_pipeline", return_value=pipeline):
        await scheduler.run_etl_job()

    assert scheduler.runner.run.await_args.kwargs["execution_type"] == "scheduled"


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(session_maker):
    scheduler = ETLScheduler(session_maker=session_maker, interval_minutes=5)

    scheduler.start()
    try:
        job = scheduler.scheduler.get_job("etl_job")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 300
    finally:
        scheduler.stop()
