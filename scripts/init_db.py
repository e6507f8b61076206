import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy.ext.asyncio import AsyncEngine
from core.database import engine
from models.base import Base
# Import all models to ensure they are registered
from models.execution_history import ExecutionHistory  # noqa: F401
from models.loaded_record import LoadedRecord  # noqa: F401

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database(bind: AsyncEngine = engine):
    logger.info("Connecting to database...")

    async with bind.begin() as conn:
        logger.info("Creating tables...")
        # Create all tables defined in models
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")


async def main():
    try:
        await init_database()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
