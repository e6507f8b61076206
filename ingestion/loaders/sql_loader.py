"""
Load normalized records with upsert logic (idempotency)
"""

from typing import Any, List, Optional, Sequence
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, DataError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from models.loaded_record import LoadedRecord
from models.base import utcnow
from schemas.records import LoadedRecordCreate
from ingestion.base import ItemOutcome, LoadSink
from core.exceptions import ErrorKind, LoadError, RecordRejectedError
import logging

logger = logging.getLogger(__name__)

# INSERT ... ON CONFLICT DO UPDATE builders per backend
UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLAlchemyLoader(LoadSink[LoadedRecordCreate]):
    """
    Load records into the loaded_records table with idempotent upserts.

    Ensures:
    - No duplicate rows on repeated runs
    - Updates existing records if source data changes
    - One INSERT ... ON CONFLICT DO UPDATE per item, so concurrent writers of
      the same key both succeed
    - Each item is committed on its own, so a rejected record never rolls
      back its siblings

    Failure classification:
    - IntegrityError / DataError: the record is permanently rejected
    - OperationalError (locks, lost connections): transient, worth retrying
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def load(
        self,
        items: Sequence[LoadedRecordCreate],
        run_id: Optional[Any] = None
    ) -> List[ItemOutcome[LoadedRecordCreate]]:
        """
        Upsert items, reporting one outcome per item.

        Args:
            items: Validated LoadedRecordCreate models
            run_id: Execution run id written onto each record

        Returns:
            ItemOutcome list in input order
        """
        if not items:
            return []

        outcomes: List[ItemOutcome[LoadedRecordCreate]] = []

        async with self._session_maker() as session:
            for item in items:
                context = {
                    "entity": item.entity,
                    "external_id": item.external_id,
                    "operation": "UPSERT",
                    "table_name": LoadedRecord.__tablename__
                }

                try:
                    created = await self._upsert(session, item, run_id)
                    await session.commit()
                    outcomes.append(ItemOutcome(item=item, created=created))

                except (IntegrityError, DataError) as e:
                    await session.rollback()
                    logger.warning(f"Record {item.entity}/{item.external_id} rejected: {e.orig}")
                    outcomes.append(ItemOutcome(
                        item=item,
                        success=False,
                        error=RecordRejectedError(
                            "Record rejected by the database",
                            context=context,
                            original_exception=e
                        )
                    ))

                except OperationalError as e:
                    await session.rollback()
                    logger.warning(f"Transient failure loading {item.entity}/{item.external_id}: {e.orig}")
                    outcomes.append(ItemOutcome(
                        item=item,
                        success=False,
                        error=LoadError(
                            "Database unavailable during upsert",
                            context=context,
                            original_exception=e
                        )
                    ))

        loaded = sum(1 for outcome in outcomes if outcome.success)
        logger.debug(f"Loaded {loaded}/{len(items)} items into {LoadedRecord.__tablename__}")
        return outcomes

    @staticmethod
    async def _upsert(session: AsyncSession, item: LoadedRecordCreate, run_id: Optional[Any]) -> bool:
        """Insert or update one record atomically; True when the row was created"""
        dialect = session.bind.dialect.name
        insert = UPSERT_DIALECTS.get(dialect)
        if insert is None:
            raise LoadError(
                f"Upsert is not supported on the {dialect} backend",
                context={"dialect": dialect, "supported": sorted(UPSERT_DIALECTS)},
                kind=ErrorKind.FATAL
            )

        now = utcnow()
        stmt = insert(LoadedRecord).values(
            entity=item.entity,
            external_id=item.external_id,
            payload=item.payload,
            run_id=run_id,
            version=1,
            created_at=now,
            updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["entity", "external_id"],
            set_={
                "payload": stmt.excluded.payload,
                "run_id": stmt.excluded.run_id,
                "updated_at": stmt.excluded.updated_at,
                "version": LoadedRecord.version + 1,
            }
        ).returning(LoadedRecord.version)

        result = await session.execute(stmt)
        return result.scalar_one() == 1
