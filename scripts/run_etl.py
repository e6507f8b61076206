"""
Script to run one ETL execution for a configured Omie entity
"""

import argparse
import asyncio
from datetime import datetime
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine, async_session_maker
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.checkpoint import INCREMENTAL, resolve_checkpoint
from ingestion.history import ExecutionHistoryStore
from ingestion.pipeline import NORMALIZERS, WATERMARKS, build_pipeline
from ingestion.runner import ETLRunner, RunConfig

setup_logging()
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one Omie ETL execution")
    parser.add_argument("--entity", default=settings.OMIE_ENTITY, choices=sorted(NORMALIZERS))
    parser.add_argument("--execution-type", default="full_load")
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("--max-concurrency", type=int)
    parser.add_argument("--retry-attempts", type=int)
    parser.add_argument(
        "--checkpoint",
        type=datetime.fromisoformat,
        help="Incremental runs: load records registered on or after this ISO date"
    )
    args = parser.parse_args(argv)

    if args.execution_type == INCREMENTAL and args.entity not in WATERMARKS:
        parser.error(f"entity {args.entity} does not support incremental runs")
    if args.checkpoint is not None and args.execution_type != INCREMENTAL:
        parser.error("--checkpoint requires --execution-type incremental")
    return args


async def run_etl(args: argparse.Namespace) -> int:
    """Run the execution; returns the process exit code"""
    config = RunConfig.from_settings(
        batch_size=args.batch_size,
        max_concurrency=args.max_concurrency,
        retry_attempts=args.retry_attempts
    )
    history_store = ExecutionHistoryStore(async_session_maker)
    runner = ETLRunner(history_store)

    checkpoint = None
    if args.execution_type == INCREMENTAL:
        checkpoint = await resolve_checkpoint(history_store, args.entity, args.checkpoint)
        logger.info(f"Incremental run from checkpoint {checkpoint.isoformat()}")

    pipeline = build_pipeline(args.entity, async_session_maker, checkpoint=checkpoint)

    try:
        logger.info(f"Running ETL for entity: {args.entity}")
        result = await runner.run(
            pipeline.source,
            pipeline.transform,
            pipeline.sink,
            config=config,
            execution_type=args.execution_type
        )
        logger.info(
            f"Execution {result.execution_id} {result.status.value}: "
            f"Processed={result.items_processed} (Inserted={result.items_inserted}, "
            f"Updated={result.items_updated}), Failed={result.items_failed}, "
            f"Batches={result.total_batches}, Checkpoint={result.checkpoint}"
        )
        if result.persistence_warning:
            logger.warning(result.persistence_warning)
        return 0 if result.items_failed == 0 else 2

    except ETLException as e:
        logger.error(f"ETL execution failed: {e}")
        return 1

    finally:
        await pipeline.close()
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(run_etl(parse_args())))
