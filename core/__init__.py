"""
Core utilities and configuration for the Omie ETL backend.

This package provides foundational components used throughout the ETL engine:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session management
    exceptions: Tagged exception hierarchy and retry classification
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import LoadError, is_retryable
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "ErrorKind",
    "ETLException",
    "ExtractionError",
    "APIExtractionError",
    "TransformationError",
    "DataFormatError",
    "LoadError",
    "RecordRejectedError",
    "RetryExhaustedError",
    "BatchSchedulerError",
    "RunCancelledError",
    "HistoryPersistenceError",
    "ExecutionNotFoundError",
    "InvalidStatusTransitionError",
    "is_retryable",
]
