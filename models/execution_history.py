from sqlalchemy import Column, Integer, String, Enum, DateTime, Float, Text, Index, JSON, Uuid
from typing import Any, Dict, List, Optional
import uuid
from models.base import Base, ExecutionStatus, ALLOWED_TRANSITIONS, utcnow
from core.exceptions import InvalidStatusTransitionError

# Bounded so a run with thousands of rejected items keeps a small audit row
MAX_STORED_ERRORS = 100


class ExecutionHistory(Base):
    """
    Durable record of one ETL execution.

    Purpose:
    - Audit trail of all runs (status, counts, effective configuration)
    - Paged operational history for the API
    - Error tracking and debugging

    Ownership:
    - The running orchestrator is the single writer while the run is live
    - Once terminal the record is read-only
    """
    __tablename__ = "execution_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Run identification
    execution_type = Column(String(50), nullable=False, index=True)
    endpoint = Column(String(255), nullable=False, default="")

    status = Column(Enum(ExecutionStatus), default=ExecutionStatus.PENDING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Outcome counters
    items_processed = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    items_inserted = Column(Integer, nullable=False, default=0)
    items_updated = Column(Integer, nullable=False, default=0)
    total_batches = Column(Integer, nullable=False, default=0)

    # Latest registration date reached; incremental runs resume from here
    checkpoint = Column(DateTime, nullable=True)

    # Error tracking
    error_summary = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    # Effective configuration for this run
    batch_size = Column(Integer, nullable=False)
    max_concurrency = Column(Integer, nullable=False)
    config_snapshot = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_execution_history_type_started", "execution_type", "started_at"),
    )

    # Columns a full-record update may overwrite; id, run_id and started_at are immutable
    MUTABLE_FIELDS = (
        "execution_type",
        "endpoint",
        "status",
        "completed_at",
        "duration_seconds",
        "items_processed",
        "items_failed",
        "items_inserted",
        "items_updated",
        "total_batches",
        "checkpoint",
        "error_summary",
        "error_details",
        "batch_size",
        "max_concurrency",
        "config_snapshot",
    )

    @property
    def is_terminal(self) -> bool:
        return ExecutionStatus(self.status).is_terminal

    def transition_to(self, new_status: ExecutionStatus) -> None:
        """Move along the execution state machine, stamping completion on terminal states"""
        current = ExecutionStatus(self.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(
                f"Cannot move execution from {current.value} to {new_status.value}",
                context={"execution_id": self.id, "from": current.value, "to": new_status.value}
            )

        self.status = new_status
        if new_status.is_terminal:
            self.completed_at = utcnow()
            if self.started_at is not None:
                self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def record_progress(self, processed: int = 0, failed: int = 0, inserted: int = 0, updated: int = 0) -> None:
        """
        Advance the outcome counters; they never go down.

        inserted/updated split the processed items when the sink reports
        whether each write created a row.
        """
        if min(processed, failed, inserted, updated) < 0:
            raise ValueError("Execution counters can only increase")
        self.items_processed = (self.items_processed or 0) + processed
        self.items_failed = (self.items_failed or 0) + failed
        self.items_inserted = (self.items_inserted or 0) + inserted
        self.items_updated = (self.items_updated or 0) + updated

    def record_errors(self, summary: Optional[str], details: Optional[List[Dict[str, Any]]] = None) -> None:
        self.error_summary = summary
        self.error_details = list(details[:MAX_STORED_ERRORS]) if details else None

    def __repr__(self) -> str:
        return (
            f"<ExecutionHistory id={self.id} type={self.execution_type} "
            f"status={getattr(self.status, 'value', self.status)} "
            f"processed={self.items_processed} failed={self.items_failed}>"
        )
