import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from core.exceptions import ETLException
from ingestion.history import ExecutionHistoryStore
from ingestion.pipeline import build_pipeline
from ingestion.runner import ETLRunner, RunConfig, RunResult

logger = logging.getLogger(__name__)


class ETLScheduler:
    def __init__(
        self,
        session_maker: async_sessionmaker = async_session_maker,
        interval_minutes: int = settings.ETL_SCHEDULE_INTERVAL_MINUTES,
        entity: str = settings.OMIE_ENTITY
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_maker = session_maker
        self.interval_minutes = interval_minutes
        self.entity = entity
        self.runner = ETLRunner(ExecutionHistoryStore(session_maker))

    async def run_etl_job(self) -> Optional[RunResult]:
        """Job to run one scheduled execution"""
        logger.info(f"Scheduler: Starting ETL job for {self.entity}")
        pipeline = build_pipeline(self.entity, self.session_maker)
        try:
            result = await self.runner.run(
                pipeline.source,
                pipeline.transform,
                pipeline.sink,
                config=RunConfig.from_settings(),
                execution_type="scheduled"
            )
            logger.info(f"Scheduler: Execution {result.execution_id} finished {result.status.value}")
            return result

        except ETLException as e:
            # The execution record already holds the failure; keep the job alive
            logger.error(f"Scheduler: ETL job failed - {e.message}")
            return None

        finally:
            await pipeline.close()

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_etl_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="etl_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"ETL Scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("ETL Scheduler stopped")
