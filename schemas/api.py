"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID
from models.base import ExecutionStatus, utcnow


# ============================================================================
# Execution History Schemas
# ============================================================================

class ExecutionHistoryResponse(BaseModel):
    """One execution history record"""
    id: int
    run_id: UUID
    execution_type: str
    endpoint: str
    status: ExecutionStatus

    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    items_processed: int = 0
    items_failed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    total_batches: int = 0
    checkpoint: Optional[datetime] = None

    error_summary: Optional[str] = None
    error_details: Optional[List[Dict[str, Any]]] = None

    batch_size: int
    max_concurrency: int
    config_snapshot: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "id": 42,
                "run_id": "550e8400-e29b-41d4-a716-446655440000",
                "execution_type": "full_load",
                "endpoint": "movimentos_financeiros",
                "status": "partially_failed",
                "started_at": "2024-01-15T10:00:00",
                "completed_at": "2024-01-15T10:02:11",
                "duration_seconds": 131.4,
                "items_processed": 990,
                "items_failed": 10,
                "total_batches": 2,
                "error_summary": "10 of 1000 items failed",
                "batch_size": 500,
                "max_concurrency": 5
            }
        }


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class PagedExecutionHistoryResponse(BaseModel):
    """Paginated execution history, most recent first"""
    items: List[ExecutionHistoryResponse]
    pagination: PaginationMetadata


# ============================================================================
# ETL Run Schemas
# ============================================================================

class RunRequest(BaseModel):
    """Per-run overrides; omitted fields fall back to settings"""
    entity: Optional[str] = Field(None, description="Omie entity: movimentos_financeiros or categorias")
    execution_type: str = Field(default="full_load", min_length=1, max_length=50)
    batch_size: Optional[int] = Field(None, ge=1, le=10000)
    max_concurrency: Optional[int] = Field(None, ge=1, le=50)
    inter_batch_delay_ms: Optional[int] = Field(None, ge=0, le=600000)
    retry_attempts: Optional[int] = Field(None, ge=1, le=10)
    checkpoint: Optional[datetime] = Field(
        None,
        description="Incremental runs only: load records registered on or after this date"
    )

    @validator("execution_type")
    def normalize_execution_type(cls, v):
        return v.strip().lower()

    @validator("checkpoint")
    def checkpoint_requires_incremental(cls, v, values):
        if v is not None and values.get("execution_type") != "incremental":
            raise ValueError("checkpoint is only accepted for incremental executions")
        return v


class RunResultResponse(BaseModel):
    """Outcome of a completed run"""
    execution_id: int
    run_id: str
    status: ExecutionStatus
    items_processed: int
    items_failed: int
    items_inserted: int = 0
    items_updated: int = 0
    total_batches: int
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    duration_seconds: Optional[float] = None
    checkpoint: Optional[datetime] = None
    persistence_warning: Optional[str] = None

    class Config:
        use_enum_values = True


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    total_executions: int = 0
    last_execution: Optional[ExecutionHistoryResponse] = None
    status: str = Field(default="healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        last_execution = values.get("last_execution")
        if last_execution is None:
            return "healthy"  # No execution yet

        if last_execution.status in (ExecutionStatus.FAILED, ExecutionStatus.FAILED.value):
            return "degraded"
        return "healthy"


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    execution_id: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)
