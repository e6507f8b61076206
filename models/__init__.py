"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class, ExecutionStatus enum and the status state machine
    execution_history: Durable record of every ETL execution
    loaded_record: Records loaded from the business API

Usage:
    from models.execution_history import ExecutionHistory
    from models.loaded_record import LoadedRecord
    from models.base import ExecutionStatus

Example:
    history = ExecutionHistory(
        execution_type="full_load",
        endpoint="movimentos_financeiros",
        batch_size=500,
        max_concurrency=5
    )
    session.add(history)
    await session.commit()

State machine:
    pending -> running -> succeeded | failed | partially_failed
    pending -> failed (aborted before the first batch)
"""

__all__ = [
    "Base",
    "ExecutionStatus",
    "ExecutionHistory",
    "LoadedRecord",
]
