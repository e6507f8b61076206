from sqlalchemy import Column, BigInteger, Integer, String, DateTime, JSON, Uuid, Index
from models.base import Base, utcnow


class LoadedRecord(Base):
    """
    Local copy of a record extracted from the business API.

    Design:
    - (entity, external_id) identifies a record, so repeated runs upsert
      instead of duplicating rows
    - payload keeps the normalized record as JSON
    - run_id links the latest write back to its execution history
    - version counts writes, so a load can tell an insert from an update
    """
    __tablename__ = "loaded_records"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    entity = Column(String(100), nullable=False)
    external_id = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False)

    run_id = Column(Uuid, nullable=True, index=True)
    # Number of writes of this record; 1 means the last write inserted it
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_loaded_entity_external", "entity", "external_id", unique=True),
    )
