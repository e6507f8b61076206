"""
On-demand ETL execution endpoint
"""

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from typing import Optional
import logging

from api.dependencies import get_history_store, get_pipeline_factory, get_runner, get_session_maker
from core.config import settings
from core.exceptions import ETLException
from ingestion.checkpoint import INCREMENTAL, resolve_checkpoint
from ingestion.history import ExecutionHistoryStore
from ingestion.pipeline import NORMALIZERS, WATERMARKS
from ingestion.runner import ETLRunner, RunConfig
from schemas.api import ErrorResponse, RunRequest, RunResultResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/etl", tags=["ETL"])


@router.post(
    "/run",
    response_model=RunResultResponse,
    responses={500: {"model": ErrorResponse}}
)
async def run_etl(
    request: Request,
    run_request: Optional[RunRequest] = Body(None),
    runner: ETLRunner = Depends(get_runner),
    history_store: ExecutionHistoryStore = Depends(get_history_store),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    pipeline_factory=Depends(get_pipeline_factory)
):
    """
    Run one execution now and wait for its result.

    Item failures are reported in the body (status partially_failed or
    failed); run-level failures answer 500 with the execution id. An
    incremental run starts from the requested checkpoint, else from the
    checkpoint of the last succeeded execution of the entity.
    """
    run_request = run_request or RunRequest()
    request_id = getattr(request.state, "request_id", "-")
    entity = run_request.entity or settings.OMIE_ENTITY

    if entity not in NORMALIZERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported entity '{entity}'. Supported: {', '.join(sorted(NORMALIZERS))}"
        )

    checkpoint = None
    if run_request.execution_type == INCREMENTAL:
        if entity not in WATERMARKS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Entity '{entity}' does not support incremental runs"
            )
        checkpoint = await resolve_checkpoint(history_store, entity, run_request.checkpoint)

    config = RunConfig.from_settings(
        batch_size=run_request.batch_size,
        max_concurrency=run_request.max_concurrency,
        inter_batch_delay=(
            run_request.inter_batch_delay_ms / 1000
            if run_request.inter_batch_delay_ms is not None else None
        ),
        retry_attempts=run_request.retry_attempts
    )

    logger.info(
        f"[{request_id}] POST /etl/run - entity={entity}, type={run_request.execution_type}, "
        f"checkpoint={checkpoint.isoformat() if checkpoint else None}, config={config.snapshot()}"
    )

    pipeline = pipeline_factory(entity, session_maker, checkpoint=checkpoint)
    try:
        result = await runner.run(
            pipeline.source,
            pipeline.transform,
            pipeline.sink,
            config=config,
            execution_type=run_request.execution_type
        )
    except ETLException as e:
        logger.error(f"[{request_id}] ETL run failed: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error=type(e).__name__,
                detail=e.message,
                execution_id=e.context.get("execution_id")
            ).model_dump(mode="json")
        )
    finally:
        await pipeline.close()

    return RunResultResponse(**result.to_dict())
