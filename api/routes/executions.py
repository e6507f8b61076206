"""
Execution history endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, Response, status
from typing import List
import math
import logging

from api.dependencies import get_history_store
from core.exceptions import ExecutionNotFoundError
from ingestion.history import ExecutionHistoryStore
from schemas.api import ExecutionHistoryResponse, PagedExecutionHistoryResponse, PaginationMetadata

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/executions/history", tags=["Executions"])


@router.get("/paged", response_model=PagedExecutionHistoryResponse)
async def get_history_paged(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=200, description="Items per page"),
    store: ExecutionHistoryStore = Depends(get_history_store)
):
    """
    Paginated execution history, most recent first.

    A page beyond the last one returns an empty item list.
    """
    request_id = getattr(request.state, "request_id", "-")
    logger.info(f"[{request_id}] GET /executions/history/paged - page={page}, page_size={page_size}")

    total_items = await store.count()
    records = await store.get_paged(page, page_size)
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0

    return PagedExecutionHistoryResponse(
        items=[ExecutionHistoryResponse.model_validate(r) for r in records],
        pagination=PaginationMetadata(
            total_items=total_items,
            total_pages=total_pages,
            current_page=page,
            page_size=page_size,
            has_next=page < total_pages,
            has_previous=page > 1
        )
    )


@router.get("/recent", response_model=List[ExecutionHistoryResponse])
async def get_recent_history(
    count: int = Query(10, ge=1, le=100, description="Number of executions"),
    store: ExecutionHistoryStore = Depends(get_history_store)
):
    records = await store.get_recent(count)
    return [ExecutionHistoryResponse.model_validate(r) for r in records]


@router.get("/type/{execution_type}", response_model=List[ExecutionHistoryResponse])
async def get_history_by_type(
    execution_type: str = Path(..., min_length=1, max_length=50),
    store: ExecutionHistoryStore = Depends(get_history_store)
):
    records = await store.get_by_type(execution_type)
    return [ExecutionHistoryResponse.model_validate(r) for r in records]


@router.get("/{execution_id}", response_model=ExecutionHistoryResponse)
async def get_history_by_id(
    execution_id: int,
    store: ExecutionHistoryStore = Depends(get_history_store)
):
    try:
        record = await store.get_by_id(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return ExecutionHistoryResponse.model_validate(record)


@router.delete("/{execution_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_history(
    execution_id: int,
    store: ExecutionHistoryStore = Depends(get_history_store)
):
    """Delete one record; 404 when there was nothing to delete"""
    deleted = await store.delete(execution_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution history {execution_id} not found"
        )
    logger.info(f"Execution history {execution_id} deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
