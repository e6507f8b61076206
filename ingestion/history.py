"""
Execution history persistence.

Every operation opens its own session, so queries never wait on the session
of a run that is writing a different record.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.base import ExecutionStatus, utcnow
from models.execution_history import ExecutionHistory
from core.exceptions import ExecutionNotFoundError

logger = logging.getLogger(__name__)


class ExecutionHistoryStore:
    """
    Append/update log of execution metadata.

    Semantics:
    - update() overwrites every mutable column (last writer wins); a run is
      the only writer of its own record
    - get_paged() orders by started_at descending, pages are 1-indexed and a
      page past the end is an empty list
    - delete() is idempotent and reports whether a row was removed
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def create(
        self,
        execution_type: str,
        endpoint: str,
        batch_size: int,
        max_concurrency: int,
        config_snapshot: Optional[Dict[str, Any]] = None
    ) -> ExecutionHistory:
        """Insert a pending record with zeroed counters"""
        history = ExecutionHistory(
            execution_type=execution_type,
            endpoint=endpoint,
            status=ExecutionStatus.PENDING,
            started_at=utcnow(),
            items_processed=0,
            items_failed=0,
            items_inserted=0,
            items_updated=0,
            total_batches=0,
            batch_size=batch_size,
            max_concurrency=max_concurrency,
            config_snapshot=config_snapshot
        )

        async with self._session_maker() as session:
            session.add(history)
            await session.commit()
            await session.refresh(history)

        logger.debug(f"Created execution history {history.id} ({execution_type})")
        return history

    async def update(self, history: ExecutionHistory) -> ExecutionHistory:
        """Overwrite the stored record with ``history``"""
        async with self._session_maker() as session:
            stored = await session.get(ExecutionHistory, history.id)
            if stored is None:
                raise ExecutionNotFoundError(
                    f"Execution history {history.id} not found",
                    context={"execution_id": history.id}
                )

            for field_name in ExecutionHistory.MUTABLE_FIELDS:
                setattr(stored, field_name, getattr(history, field_name))
            stored.updated_at = utcnow()

            await session.commit()
            await session.refresh(stored)

        history.updated_at = stored.updated_at
        return stored

    async def get_by_id(self, execution_id: int) -> ExecutionHistory:
        async with self._session_maker() as session:
            history = await session.get(ExecutionHistory, execution_id)

        if history is None:
            raise ExecutionNotFoundError(
                f"Execution history {execution_id} not found",
                context={"execution_id": execution_id}
            )
        return history

    async def get_paged(self, page: int, page_size: int) -> List[ExecutionHistory]:
        """Most recent first; page 1 is the first page"""
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        query = (
            select(ExecutionHistory)
            .order_by(ExecutionHistory.started_at.desc(), ExecutionHistory.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_recent(self, count: int = 10) -> List[ExecutionHistory]:
        return await self.get_paged(page=1, page_size=count)

    async def get_by_type(self, execution_type: str) -> List[ExecutionHistory]:
        query = (
            select(ExecutionHistory)
            .where(ExecutionHistory.execution_type == execution_type)
            .order_by(ExecutionHistory.started_at.desc(), ExecutionHistory.id.desc())
        )

        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_last_checkpoint(self, endpoint: str) -> Optional[datetime]:
        """Checkpoint of the most recent succeeded execution of ``endpoint``, if any"""
        query = (
            select(ExecutionHistory.checkpoint)
            .where(
                ExecutionHistory.endpoint == endpoint,
                ExecutionHistory.status == ExecutionStatus.SUCCEEDED,
                ExecutionHistory.checkpoint.is_not(None)
            )
            .order_by(ExecutionHistory.started_at.desc(), ExecutionHistory.id.desc())
            .limit(1)
        )

        async with self._session_maker() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def delete(self, execution_id: int) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(
                delete(ExecutionHistory).where(ExecutionHistory.id == execution_id)
            )
            await session.commit()

        deleted = result.rowcount > 0
        if not deleted:
            logger.debug(f"Delete of missing execution history {execution_id} ignored")
        return deleted

    async def count(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count()).select_from(ExecutionHistory)
            )
            return result.scalar() or 0
