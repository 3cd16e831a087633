"""Shared pytest fixtures: a temp-file SQLite database, deterministic
services and collaborator doubles."""

import asyncio
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Union

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["INNGEST_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FORMAT"] = "text"
os.environ["SERPAPI_API_KEY"] = ""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricetracker.core.database import build_async_engine, init_db
from pricetracker.core.exceptions import RecipeGenerationError, SearchProviderError
from pricetracker.core.identity import SequentialIds, SteppingClock, utcnow
from pricetracker.models.enums import FailureType
from pricetracker.models.scraping import ProductData, ScrapeConfig, ScrapingResult, SearchResult
from pricetracker.services.job_orchestrator import JobOrchestrator
from pricetracker.services.job_store import JobStore
from pricetracker.services.price_ledger import PriceLedger
from pricetracker.services.product_catalog import ProductCatalog
from pricetracker.services.source_locks import SourceLockTable
from pricetracker.services.source_registry import SourceRegistry

START = datetime(2026, 1, 1, 12, 0, 0)


def product_result(
    name: str = "Widget",
    price: str = "19.99",
    currency: str = "USD",
    scraped_at: Optional[datetime] = None,
    **fields,
) -> ScrapingResult:
    """A successful extraction."""
    return ScrapingResult.ok(
        ProductData(
            name=name,
            price=Decimal(price),
            currency=currency,
            in_stock=True,
            scraped_at=scraped_at or utcnow(),
            **fields,
        )
    )


def failure_result(
    failure_type: FailureType = FailureType.SELECTOR_NOT_FOUND,
    message: str = "Selector for price matched nothing",
    selector: Optional[str] = ".price",
) -> ScrapingResult:
    """A failed extraction."""
    return ScrapingResult.fail(failure_type, message, selector)


Response = Union[ScrapingResult, Exception, Callable[[str, ScrapeConfig], ScrapingResult]]


class StubExtractor:
    """
    Extractor double.

    ``respond`` is a fixed result, an exception to raise, or a callable of
    ``(url, config)``. Setting ``gate`` holds every extraction until the
    event is set; ``started`` fires when the first extraction begins.
    """

    def __init__(self, respond: Response, delay: float = 0.0, gate: Optional[asyncio.Event] = None):
        self.respond = respond
        self.delay = delay
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: List[str] = []

    async def extract(self, url: str, config: ScrapeConfig) -> ScrapingResult:
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        response = self.respond
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(url, config)
        return response


class StubSearchProvider:
    """Search double returning fixed hits, or raising SearchProviderError."""

    def __init__(self, hits: Optional[List[SearchResult]] = None, fail: bool = False):
        self.hits = hits or []
        self.fail = fail
        self.queries: List[str] = []

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        self.queries.append(query)
        if self.fail:
            raise SearchProviderError("search backend down")
        return self.hits[:limit]


class StubRecipeGenerator:
    """Recipe generator double: returns ``recipe`` or raises when it is None."""

    def __init__(self, recipe: Optional[ScrapeConfig] = None):
        self.recipe = recipe
        self.calls: List[str] = []

    async def generate(self, url: str, previous: Optional[ScrapeConfig] = None) -> ScrapeConfig:
        self.calls.append(url)
        if self.recipe is None:
            raise RecipeGenerationError("No extraction strategy matched the page", url=url)
        return self.recipe


@pytest.fixture
async def engine(tmp_path):
    """Fresh temp-file SQLite database per test."""
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pricetracker.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock(START, timedelta(seconds=1))


@pytest.fixture
def registry(ids, clock) -> SourceRegistry:
    return SourceRegistry(id_factory=ids, clock=clock)


@pytest.fixture
def ledger(ids, clock) -> PriceLedger:
    return PriceLedger(id_factory=ids, clock=clock)


@pytest.fixture
def catalog(ids, clock) -> ProductCatalog:
    return ProductCatalog(id_factory=ids, clock=clock)


@pytest.fixture
def jobs(ids, clock) -> JobStore:
    return JobStore(id_factory=ids, clock=clock)


@pytest.fixture
def locks(session_factory) -> SourceLockTable:
    return SourceLockTable(session_factory)


@pytest.fixture
def make_orchestrator(session_factory, registry, ledger, catalog, jobs, locks):
    """Build an orchestrator around the given collaborator doubles."""

    def build(
        extractor: StubExtractor,
        search_provider: Optional[StubSearchProvider] = None,
        recipe_generator: Optional[StubRecipeGenerator] = None,
        **options,
    ) -> JobOrchestrator:
        return JobOrchestrator(
            session_factory=session_factory,
            extractor=extractor,
            search_provider=search_provider,
            recipe_generator=recipe_generator,
            registry=registry,
            ledger=ledger,
            catalog=catalog,
            jobs=jobs,
            locks=locks,
            **options,
        )

    return build


@pytest.fixture
async def source(session_factory, registry):
    """A registered ecommerce source."""
    async with session_factory() as session:
        created = await registry.register("https://shop.test/x", session, source_type="ecommerce")
        await session.commit()
    return created
