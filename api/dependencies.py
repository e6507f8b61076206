"""
FastAPI dependencies shared by the routers
"""

from typing import AsyncGenerator, Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import async_session_maker
from ingestion.history import ExecutionHistoryStore
from ingestion.pipeline import Pipeline, build_pipeline
from ingestion.runner import ETLRunner


def get_session_maker() -> async_sessionmaker:
    return async_session_maker


async def get_db(
    session_maker: async_sessionmaker = Depends(get_session_maker)
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with session_maker() as session:
        yield session


def get_history_store(
    session_maker: async_sessionmaker = Depends(get_session_maker)
) -> ExecutionHistoryStore:
    return ExecutionHistoryStore(session_maker)


def get_runner(
    history_store: ExecutionHistoryStore = Depends(get_history_store)
) -> ETLRunner:
    return ETLRunner(history_store)


def get_pipeline_factory() -> Callable[..., Pipeline]:
    return build_pipeline
