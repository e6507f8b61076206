"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from typing import Any, Dict, Iterable, List, Optional, Sequence
from core.database import build_session_maker
from core.exceptions import ETLException, LoadError, RecordRejectedError
from ingestion.base import DataSource, ItemOutcome, LoadSink, Page
from ingestion.history import ExecutionHistoryStore
from models.base import Base
# Import all models to ensure they are registered
from models.execution_history import ExecutionHistory  # noqa: F401
from models.loaded_record import LoadedRecord  # noqa: F401


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite database file per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return build_session_maker(test_engine)


@pytest.fixture
def history_store(session_maker):
    return ExecutionHistoryStore(session_maker)


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


class FakeSource(DataSource):
    """In-memory paginated source"""

    def __init__(
        self,
        items: Sequence[Dict[str, Any]],
        page_size: int = 100,
        error: Optional[Exception] = None,
        name: str = "fake_source"
    ):
        super().__init__(source_name=name)
        self.items = list(items)
        self.page_size = page_size
        self.error = error
        self.pages_fetched = 0
        self.closed = False

    async def fetch_page(self, cursor: Any) -> Page:
        if self.error is not None:
            raise self.error

        start = (cursor - 1) * self.page_size
        chunk = self.items[start:start + self.page_size]
        self.pages_fetched += 1
        has_next = start + self.page_size < len(self.items)
        return Page(items=chunk, next_cursor=cursor + 1 if has_next else None)

    async def close(self) -> None:
        self.closed = True


class FakeSink(LoadSink):
    """
    In-memory sink keyed on item["id"].

    reject: ids permanently rejected
    transient_failures: id -> number of transient failures before success
    raise_on: id -> exception raised out of load()
    existing: ids already stored; when given, outcomes report created
    """

    def __init__(
        self,
        reject: Iterable[Any] = (),
        transient_failures: Optional[Dict[Any, int]] = None,
        raise_on: Optional[Dict[Any, BaseException]] = None,
        on_load=None,
        existing: Optional[Iterable[Any]] = None
    ):
        self.reject = set(reject)
        self.transient_failures = dict(transient_failures or {})
        self.raise_on = dict(raise_on or {})
        self.on_load = on_load
        self.existing = set(existing) if existing is not None else None
        self.loaded: List[Any] = []
        self.attempts: Dict[Any, int] = {}
        self.run_ids: List[Any] = []

    async def load(self, items, run_id=None) -> List[ItemOutcome]:
        outcomes = []
        for item in items:
            key = item["id"]
            self.attempts[key] = self.attempts.get(key, 0) + 1
            self.run_ids.append(run_id)

            if self.on_load is not None:
                await self.on_load(item)

            if key in self.raise_on:
                raise self.raise_on[key]

            error: Optional[ETLException] = None
            if key in self.reject:
                error = RecordRejectedError("rejected", context={"id": key})
            elif self.transient_failures.get(key, 0) > 0:
                self.transient_failures[key] -= 1
                error = LoadError("database busy", context={"id": key})

            if error is None:
                self.loaded.append(key)
                created = None
                if self.existing is not None:
                    created = key not in self.existing
                    self.existing.add(key)
                outcomes.append(ItemOutcome(item=item, created=created))
            else:
                outcomes.append(ItemOutcome(item=item, success=False, error=error))
        return outcomes


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_sink():
    return FakeSink


class FakePipeline:
    def __init__(self, source: DataSource, sink: LoadSink, transform=None):
        self.source = source
        self.sink = sink
        self.transform = transform or (lambda item: item)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_pipeline():
    return FakePipeline


def numbered_items(count: int) -> List[Dict[str, Any]]:
    return [{"id": i} for i in range(1, count + 1)]


@pytest.fixture
def items_factory():
    return numbered_items


@pytest.fixture
def omie_movimento():
    """One item as returned by ListarMovimentos"""
    return {
        "detalhes": {
            "nCodTitulo": 8754123,
            "cCodIntTitulo": "TIT-0001",
            "cNumTitulo": "0001/1",
            "dDtEmissao": "05/01/2024",
            "dDtVenc": "05/02/2024",
            "dDtPrevisao": "05/02/2024",
            "dDtPagamento": "",
            "nCodCliente": 1234,
            "cStatus": "A VENCER",
            "cNatureza": "R",
            "cCodCateg": "1.01.02",
            "nValorTitulo": 1520.456,
            "nValorPIS": 9.88,
            "nValorCOFINS": "45.6149",
            "nValorIR": 0
        },
        "resumo": {
            "cLiquidado": "N",
            "nValPago": 0
        }
    }
