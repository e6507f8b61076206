"""
Pydantic schemas for data validation and serialization.

Schemas:
    records: Normalized records handed from the transform step to the sink
    api: API endpoint request/response schemas

Usage:
    from schemas.records import LoadedRecordCreate
    from schemas.api import ExecutionHistoryResponse, RunRequest

Example:
    record = LoadedRecordCreate(
        entity="categorias",
        external_id=" 1.01.02 ",
        payload={"descricao": "Vendas"}
    )

    # Identifiers are stripped by the validator
    assert record.external_id == "1.01.02"
"""

__all__ = [
    "LoadedRecordCreate",
    "ExecutionHistoryResponse",
    "PagedExecutionHistoryResponse",
    "PaginationMetadata",
    "RunRequest",
    "RunResultResponse",
    "HealthCheckResponse",
    "ErrorResponse",
]
