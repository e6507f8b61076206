"""
Collaborator contracts consumed by the ETL engine
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar
import logging

from core.exceptions import ETLException

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Page:
    """One page of extracted records; next_cursor is None on the last page"""
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[Any] = None

    @property
    def done(self) -> bool:
        return self.next_cursor is None


@dataclass
class ItemOutcome(Generic[T]):
    """Per-item result reported by a load sink; created is None when the sink cannot tell"""
    item: T
    success: bool = True
    error: Optional[ETLException] = None
    created: Optional[bool] = None


class DataSource(ABC):
    """
    Abstract base class for paginated remote sources.

    Responsibilities:
    - Fetch one page per call, starting from ``initial_cursor``
    - Classify failures as transient or permanent (ErrorKind on the raised error)
    - Apply any transport-level retries itself
    """

    def __init__(self, source_name: str):
        self.source_name = source_name

    @property
    def initial_cursor(self) -> Any:
        return 1

    @property
    def checkpoint(self) -> Optional[datetime]:
        """Latest registration date seen so far, for sources that track one"""
        return None

    @abstractmethod
    async def fetch_page(self, cursor: Any) -> Page:
        """
        Fetch a single page.

        Args:
            cursor: Position returned by the previous page (or initial_cursor)

        Returns:
            Page with the records and the cursor of the next page
        """
        pass

    async def fetch_all(self) -> List[Dict[str, Any]]:
        """Follow cursors until the source reports the last page"""
        records: List[Dict[str, Any]] = []
        cursor = self.initial_cursor
        pages = 0

        while cursor is not None:
            page = await self.fetch_page(cursor)
            records.extend(page.items)
            pages += 1
            cursor = page.next_cursor

        logger.info(f"Fetched {len(records)} records from {self.source_name} ({pages} pages)")
        return records

    async def close(self) -> None:
        """Release any held resources"""
        return None


class LoadSink(ABC, Generic[T]):
    """
    Destination of transformed records.

    ``load`` reports one ItemOutcome per input item, in order. A failed outcome
    carries an ETLException whose kind tells the engine whether the item may be
    retried (TRANSIENT) or was permanently rejected (PERMANENT).
    """

    @abstractmethod
    async def load(self, items: Sequence[T], run_id: Optional[Any] = None) -> List[ItemOutcome[T]]:
        pass
