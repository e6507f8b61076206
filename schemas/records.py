"""
Pydantic schemas for records flowing from the transform step into the sink
"""

from pydantic import BaseModel, Field, validator
from typing import Any, Dict


class LoadedRecordCreate(BaseModel):
    """
    Normalized record ready for loading.

    Ensures:
    - The record carries a non-empty identifier
    - The payload is a JSON object
    """

    entity: str = Field(..., min_length=1, max_length=100)
    external_id: str = Field(..., min_length=1, max_length=255)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @validator("external_id", pre=True)
    def clean_external_id(cls, v):
        """Identifiers arrive as numbers or padded strings"""
        if v is None:
            raise ValueError("external_id is required")
        v = str(v).strip()
        if not v:
            raise ValueError("external_id cannot be empty after stripping")
        return v
