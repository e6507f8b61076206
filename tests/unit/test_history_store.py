"""
Unit tests for the execution history store and the ExecutionHistory model
"""

import asyncio
from datetime import datetime

import pytest
from core.exceptions import ExecutionNotFoundError, InvalidStatusTransitionError
from models.base import ExecutionStatus
from models.execution_history import ExecutionHistory, MAX_STORED_ERRORS


async def create_records(store, count: int, execution_type: str = "full_load"):
    records = []
    for _ in range(count):
        records.append(await store.create(
            execution_type=execution_type,
            endpoint="movimentos_financeiros",
            batch_size=500,
            max_concurrency=5
        ))
    return records


async def finish(store, history, status, checkpoint=None, endpoint=None):
    if endpoint is not None:
        history.endpoint = endpoint
    history.transition_to(ExecutionStatus.RUNNING)
    history.checkpoint = checkpoint
    history.transition_to(status)
    return await store.update(history)


class TestExecutionHistoryStore:
    """Test persistence operations"""

    @pytest.mark.asyncio
    async def test_create_pending_record(self, history_store):
        history = await history_store.create(
            execution_type="full_load",
            endpoint="movimentos_financeiros",
            batch_size=200,
            max_concurrency=3,
            config_snapshot={"batch_size": 200}
        )

        assert history.id is not None
        assert history.run_id is not None
        assert history.status == ExecutionStatus.PENDING
        assert history.started_at is not None
        assert history.completed_at is None
        assert history.items_processed == 0
        assert history.items_failed == 0
        assert history.batch_size == 200
        assert history.max_concurrency == 3

    @pytest.mark.asyncio
    async def test_update_overwrites_mutable_fields(self, history_store):
        history = (await create_records(history_store, 1))[0]

        history.transition_to(ExecutionStatus.RUNNING)
        history.record_progress(processed=7, failed=2)
        history.transition_to(ExecutionStatus.PARTIALLY_FAILED)
        history.record_errors("2 of 9 items failed", [{"message": "bad"}])
        await history_store.update(history)

        stored = await history_store.get_by_id(history.id)
        assert stored.status == ExecutionStatus.PARTIALLY_FAILED
        assert stored.items_processed == 7
        assert stored.items_failed == 2
        assert stored.completed_at is not None
        assert stored.error_summary == "2 of 9 items failed"
        assert stored.error_details == [{"message": "bad"}]
        assert stored.started_at == history.started_at
        assert stored.run_id == history.run_id

    @pytest.mark.asyncio
    async def test_update_missing_record(self, history_store):
        ghost = ExecutionHistory(
            id=99999,
            execution_type="full_load",
            endpoint="x",
            status=ExecutionStatus.RUNNING,
            batch_size=1,
            max_concurrency=1
        )

        with pytest.raises(ExecutionNotFoundError):
            await history_store.update(ghost)

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, history_store):
        with pytest.raises(ExecutionNotFoundError):
            await history_store.get_by_id(12345)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size,expected", [
        (1, 3, 3),
        (2, 3, 3),
        (3, 3, 1),
        (4, 3, 0),
        (1, 10, 7),
        (2, 10, 0),
    ])
    async def test_get_paged_sizes(self, history_store, page, page_size, expected):
        await create_records(history_store, 7)

        records = await history_store.get_paged(page, page_size)

        assert len(records) == min(page_size, max(0, 7 - (page - 1) * page_size))
        assert len(records) == expected

    @pytest.mark.asyncio
    async def test_get_paged_most_recent_first(self, history_store):
        created = await create_records(history_store, 5)

        records = await history_store.get_paged(1, 10)

        started = [r.started_at for r in records]
        assert started == sorted(started, reverse=True)
        assert [r.id for r in records] == [h.id for h in reversed(created)]

    @pytest.mark.asyncio
    async def test_get_paged_rejects_invalid_page(self, history_store):
        with pytest.raises(ValueError):
            await history_store.get_paged(0, 10)
        with pytest.raises(ValueError):
            await history_store.get_paged(1, 0)

    @pytest.mark.asyncio
    async def test_get_recent_and_by_type(self, history_store):
        await create_records(history_store, 3, execution_type="full_load")
        await create_records(history_store, 2, execution_type="scheduled")

        recent = await history_store.get_recent(2)
        scheduled = await history_store.get_by_type("scheduled")

        assert len(recent) == 2
        assert all(r.execution_type == "scheduled" for r in recent)
        assert len(scheduled) == 2
        assert await history_store.get_by_type("incremental") == []

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, history_store):
        history = (await create_records(history_store, 1))[0]

        assert await history_store.delete(history.id) is True
        assert await history_store.delete(history.id) is False
        assert await history_store.count() == 0

    @pytest.mark.asyncio
    async def test_count(self, history_store):
        assert await history_store.count() == 0
        await create_records(history_store, 4)
        assert await history_store.count() == 4

    @pytest.mark.asyncio
    async def test_reads_while_another_record_is_written(self, history_store):
        records = await create_records(history_store, 3)
        writing = records[0]
        writing.transition_to(ExecutionStatus.RUNNING)

        _, fetched, total = await asyncio.gather(
            history_store.update(writing),
            history_store.get_by_id(records[1].id),
            history_store.count()
        )

        assert fetched.id == records[1].id
        assert total == 3

    @pytest.mark.asyncio
    async def test_last_checkpoint_comes_from_latest_succeeded_run(self, history_store):
        assert await history_store.get_last_checkpoint("movimentos_financeiros") is None

        first, failed, partial, other, unchecked = await create_records(history_store, 5)
        await finish(history_store, first, ExecutionStatus.SUCCEEDED, datetime(2024, 3, 1))
        await finish(history_store, failed, ExecutionStatus.FAILED, datetime(2024, 3, 9))
        await finish(history_store, partial, ExecutionStatus.PARTIALLY_FAILED, datetime(2024, 3, 8))
        await finish(history_store, other, ExecutionStatus.SUCCEEDED, datetime(2024, 3, 7), endpoint="categorias")
        await finish(history_store, unchecked, ExecutionStatus.SUCCEEDED)

        assert await history_store.get_last_checkpoint("movimentos_financeiros") == datetime(2024, 3, 1)
        assert await history_store.get_last_checkpoint("categorias") == datetime(2024, 3, 7)

    @pytest.mark.asyncio
    async def test_insert_and_update_counters_are_persisted(self, history_store):
        history = (await create_records(history_store, 1))[0]
        assert (history.items_inserted, history.items_updated) == (0, 0)

        history.record_progress(processed=5, inserted=3, updated=2)
        await history_store.update(history)

        stored = await history_store.get_by_id(history.id)
        assert (stored.items_processed, stored.items_inserted, stored.items_updated) == (5, 3, 2)


class TestExecutionHistoryModel:
    """Test the status state machine and counters"""

    def _history(self, status=ExecutionStatus.PENDING):
        return ExecutionHistory(
            execution_type="full_load",
            endpoint="x",
            status=status,
            items_processed=0,
            items_failed=0,
            batch_size=10,
            max_concurrency=2
        )

    def test_allowed_path(self):
        history = self._history()

        history.transition_to(ExecutionStatus.RUNNING)
        assert history.completed_at is None

        history.transition_to(ExecutionStatus.SUCCEEDED)
        assert history.is_terminal
        assert history.completed_at is not None

    def test_pending_may_fail_directly(self):
        history = self._history()
        history.transition_to(ExecutionStatus.FAILED)
        assert history.status == ExecutionStatus.FAILED

    @pytest.mark.parametrize("terminal", [
        ExecutionStatus.SUCCEEDED,
        ExecutionStatus.FAILED,
        ExecutionStatus.PARTIALLY_FAILED,
    ])
    def test_terminal_states_are_final(self, terminal):
        history = self._history(status=terminal)

        with pytest.raises(InvalidStatusTransitionError):
            history.transition_to(ExecutionStatus.RUNNING)

    def test_pending_cannot_succeed_directly(self):
        with pytest.raises(InvalidStatusTransitionError):
            self._history().transition_to(ExecutionStatus.SUCCEEDED)

    def test_counters_never_decrease(self):
        history = self._history()
        history.record_progress(processed=3, failed=1)
        history.record_progress(processed=2)

        assert (history.items_processed, history.items_failed) == (5, 1)
        with pytest.raises(ValueError):
            history.record_progress(processed=-1)
        with pytest.raises(ValueError):
            history.record_progress(updated=-1)

    def test_error_details_are_bounded(self):
        history = self._history()
        history.record_errors("many", [{"n": i} for i in range(MAX_STORED_ERRORS + 50)])

        assert len(history.error_details) == MAX_STORED_ERRORS
        assert history.error_details[0] == {"n": 0}
