"""
Wiring of the Omie source, normalizer and SQL sink for each supported entity
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ingestion.base import DataSource
from ingestion.checkpoint import CheckpointFilter, Watermark
from ingestion.extractors.api_extractor import OmieAPIExtractor
from ingestion.loaders.sql_loader import SQLAlchemyLoader
from ingestion.transformers.normalizer import RecordNormalizer

NORMALIZERS: Dict[str, RecordNormalizer] = {
    "movimentos_financeiros": RecordNormalizer(
        entity="movimentos_financeiros",
        detail_key="detalhes",
        id_fields=("nCodTitulo", "cCodIntTitulo"),
        date_fields=("dDtEmissao", "dDtVenc", "dDtPrevisao", "dDtPagamento", "dDtRegistro"),
        amount_fields=(
            "nValorTitulo",
            "nValorPIS",
            "nValorCOFINS",
            "nValorCSLL",
            "nValorIR",
            "nValorISS",
            "nValorINSS",
        ),
    ),
    "categorias": RecordNormalizer(
        entity="categorias",
        id_fields=("codigo",),
    ),
}

# Entities whose records carry a registration date support incremental runs
WATERMARKS: Dict[str, Watermark] = {
    "movimentos_financeiros": Watermark(field="dDtRegistro", detail_key="detalhes"),
}


@dataclass
class Pipeline:
    source: DataSource
    transform: RecordNormalizer
    sink: SQLAlchemyLoader

    async def close(self) -> None:
        await self.source.close()


def build_pipeline(
    entity: str,
    session_maker: async_sessionmaker,
    client: Optional[httpx.AsyncClient] = None,
    checkpoint: Optional[datetime] = None
) -> Pipeline:
    """
    Assemble the collaborators for one Omie entity.

    Entities with a watermark read through a CheckpointFilter, which drops
    records registered before ``checkpoint`` (when given) and tracks the
    checkpoint the run reaches.
    """
    if entity not in NORMALIZERS:
        raise ValueError(f"Unsupported entity: {entity}")
    if checkpoint is not None and entity not in WATERMARKS:
        raise ValueError(f"Entity {entity} has no registration date to checkpoint on")

    source: DataSource = OmieAPIExtractor(entity=entity, client=client)
    if entity in WATERMARKS:
        source = CheckpointFilter(source, WATERMARKS[entity], since=checkpoint)

    return Pipeline(
        source=source,
        transform=NORMALIZERS[entity],
        sink=SQLAlchemyLoader(session_maker),
    )
