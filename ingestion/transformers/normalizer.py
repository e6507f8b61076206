"""
Transform raw API records into loadable records with Pydantic validation
"""

from typing import Dict, Any, Optional, Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pydantic import ValidationError as PydanticValidationError
from schemas.records import LoadedRecordCreate
from core.exceptions import DataFormatError
import logging

logger = logging.getLogger(__name__)

DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y")


class RecordNormalizer:
    """
    Normalize raw records into LoadedRecordCreate.

    Handles:
    - Identifier lookup (first non-empty of ``id_fields``)
    - Date strings in the API's formats, rewritten to ISO-8601
    - Monetary values rounded to two decimals

    The transform is pure: it never touches the network or the database, and
    every failure is a DataFormatError, which the engine never retries.
    """

    def __init__(
        self,
        entity: str,
        id_fields: Sequence[str] = ("id",),
        date_fields: Sequence[str] = (),
        amount_fields: Sequence[str] = (),
        detail_key: Optional[str] = None
    ):
        self.entity = entity
        self.id_fields = tuple(id_fields)
        self.date_fields = tuple(date_fields)
        self.amount_fields = tuple(amount_fields)
        self.detail_key = detail_key

    def __call__(self, raw_record: Dict[str, Any]) -> LoadedRecordCreate:
        return self.normalize(raw_record)

    def normalize(self, raw_record: Dict[str, Any]) -> LoadedRecordCreate:
        if not isinstance(raw_record, dict):
            raise DataFormatError(
                "Record is not a JSON object",
                context={"entity": self.entity, "record_type": type(raw_record).__name__}
            )

        record = raw_record
        if self.detail_key:
            record = raw_record.get(self.detail_key)
            if not isinstance(record, dict):
                raise DataFormatError(
                    f"Record has no '{self.detail_key}' object",
                    context={"entity": self.entity, "field_name": self.detail_key}
                )

        external_id = self._extract_id(record)

        payload = dict(record)
        for field_name in self.date_fields:
            if field_name in payload:
                payload[field_name] = self._parse_date(payload[field_name])
        for field_name in self.amount_fields:
            if field_name in payload:
                payload[field_name] = self._parse_amount(payload[field_name], field_name, external_id)

        try:
            return LoadedRecordCreate(entity=self.entity, external_id=external_id, payload=payload)
        except PydanticValidationError as e:
            raise DataFormatError(
                "Normalized record failed validation",
                context={"entity": self.entity, "external_id": external_id},
                original_exception=e
            )

    def _extract_id(self, record: Dict[str, Any]) -> str:
        for field_name in self.id_fields:
            value = record.get(field_name)
            if value is not None and str(value).strip() not in ("", "0"):
                return str(value).strip()

        raise DataFormatError(
            "Record has no usable identifier",
            context={"entity": self.entity, "field_name": "|".join(self.id_fields)}
        )

    @staticmethod
    def _parse_date(value: Any) -> Optional[str]:
        """Dates the API cannot express cleanly become null instead of failing the record"""
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, datetime):
            return value.date().isoformat()

        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(str(value).strip(), fmt).date().isoformat()
            except ValueError:
                continue

        logger.warning(f"Unparseable date dropped: {value!r}")
        return None

    def _parse_amount(self, value: Any, field_name: str, external_id: str) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            return float(round(Decimal(str(value)), 2))
        except (InvalidOperation, ValueError) as e:
            raise DataFormatError(
                f"Invalid amount in '{field_name}'",
                context={
                    "entity": self.entity,
                    "external_id": external_id,
                    "field_name": field_name,
                    "field_value": value
                },
                original_exception=e
            )
