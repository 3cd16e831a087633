"""
Job orchestrator: runs discovery, update and rediscovery jobs.

Each job is a ``ScrapeJob`` row driven through pending -> running ->
completed | failed. Work on a single source happens under that source's
lease in the lock table, so two jobs never interleave writes for the same
source. Per-source problems become entries in ``result.errors``; only
job-level conditions (bad query, nothing to do) fail a job.

Write order per source: catalog upsert and price append are committed
first, registry bookkeeping second. A crash in between leaves a stale
``last_scraped_at``, never a lost price.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricetracker.core.config import settings
from pricetracker.core.exceptions import (
    APIException,
    DuplicateSourceError,
    ExtractionError,
    InvalidInputError,
    RecipeGenerationError,
    SearchProviderError,
    SourceBusyError,
    UnknownSourceError,
)
from pricetracker.core.logging import get_logger, set_job_id
from pricetracker.core.url_utils import extract_domain, is_valid_url, normalize_url
from pricetracker.models.enums import FailureType, JobType, SourceType
from pricetracker.models.scrape_job import ScrapeJob
from pricetracker.models.scraping import ProductData, ScrapeConfig, ScrapingResult, SearchResult
from pricetracker.services.extractor import Extractor
from pricetracker.services.job_store import JobStore, job_store
from pricetracker.services.price_ledger import PriceLedger, price_ledger
from pricetracker.services.product_catalog import ProductCatalog, product_catalog
from pricetracker.services.recipe_generator import RecipeGenerator
from pricetracker.services.search_provider import SearchProvider
from pricetracker.services.source_locks import CATALOG_LOCK_KEY, SourceLockTable, source_lock_key
from pricetracker.services.source_registry import SourceOutcome, SourceRegistry, source_registry

logger = get_logger(__name__)

UPDATED = "updated"
FAILED = "failed"
SKIPPED = "skipped"
CANCELLED = "cancelled"


@dataclass
class SourceRun:
    """What happened to one source (or discovery candidate) inside a job."""

    status: str
    source_id: Optional[UUID] = None
    url: Optional[str] = None
    product_id: Optional[UUID] = None
    data: Optional[ProductData] = None
    registered: bool = False
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def from_exception(
        cls,
        status: str,
        exc: APIException,
        source_id: Optional[UUID] = None,
        url: Optional[str] = None,
    ) -> "SourceRun":
        return cls(
            status=status,
            source_id=source_id,
            url=url,
            error=error_entry(exc.error_code, exc.message, source_id=source_id, url=url),
        )


@dataclass
class JobTally:
    """Aggregated counts and error entries written to ``ScrapeJob.result``."""

    updated: int = 0
    failed: int = 0
    skipped: int = 0
    sources_registered: int = 0
    product_ids: set = field(default_factory=set)
    cancelled_sources: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, run: SourceRun) -> None:
        if run.status == UPDATED:
            self.updated += 1
            if run.product_id is not None:
                self.product_ids.add(run.product_id)
        elif run.status == FAILED:
            self.failed += 1
        elif run.status == SKIPPED:
            self.skipped += 1
        elif run.status == CANCELLED:
            self.cancelled_sources.append(str(run.source_id or run.url))
        if run.registered:
            self.sources_registered += 1
        if run.error is not None:
            self.errors.append(run.error)

    def to_result(self) -> Dict[str, Any]:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "skipped": self.skipped,
            "productsFound": len(self.product_ids),
            "pricesUpdated": self.updated,
            "sourcesRegistered": self.sources_registered,
            "cancelled": bool(self.cancelled_sources),
            "cancelledSources": self.cancelled_sources,
            "errors": self.errors,
        }


def error_entry(
    error_code: str,
    message: str,
    source_id: Optional[UUID] = None,
    url: Optional[str] = None,
    failure_type: Optional[str] = None,
    selector: Optional[str] = None,
) -> Dict[str, Any]:
    entry = {
        "sourceId": str(source_id) if source_id else None,
        "url": url,
        "errorCode": error_code,
        "failureType": failure_type,
        "message": message,
        "selector": selector,
    }
    return {key: value for key, value in entry.items() if value is not None}


class JobOrchestrator:
    """Creates and runs scrape jobs against injected collaborators."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        extractor: Extractor,
        search_provider: Optional[SearchProvider] = None,
        recipe_generator: Optional[RecipeGenerator] = None,
        registry: SourceRegistry = source_registry,
        ledger: PriceLedger = price_ledger,
        catalog: ProductCatalog = product_catalog,
        jobs: JobStore = job_store,
        locks: Optional[SourceLockTable] = None,
        max_concurrency: Optional[int] = None,
        extraction_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.extractor = extractor
        self.search_provider = search_provider
        self.recipe_generator = recipe_generator
        self.registry = registry
        self.ledger = ledger
        self.catalog = catalog
        self.jobs = jobs
        self.locks = locks or SourceLockTable(session_factory)
        self.max_concurrency = max_concurrency or settings.MAX_CONCURRENT_EXTRACTIONS
        self.extraction_timeout = (
            extraction_timeout if extraction_timeout is not None else settings.EXTRACTION_TIMEOUT
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def dispatch_discovery(self, query: Any) -> ScrapeJob:
        """
        Search for ``query`` and turn the hits into sources, products and prices.

        Individual URL failures are recorded; the job only fails when the
        query is blank or the search itself fails.
        """
        job = await self._open_job(JobType.DISCOVERY, query=query if isinstance(query, str) else None)
        return await self._guard(job.id, self._discover(job, query))

    async def _discover(self, job: ScrapeJob, query: Any) -> ScrapeJob:
        if not isinstance(query, str) or not query.strip():
            return await self._fail_job(job.id, "Query must be a non-empty string")
        if self.search_provider is None:
            return await self._fail_job(job.id, "No search provider configured")

        query = query.strip()
        try:
            hits = await self.search_provider.search(query, settings.DISCOVERY_MAX_RESULTS)
        except SearchProviderError as e:
            return await self._fail_job(job.id, e.message)

        candidates = self._dedupe_candidates(hits)
        logger.info(
            "Discovery started",
            extra={"query": query, "candidate_count": len(candidates)},
        )

        runs = await self._run_bounded(
            [(None, hit.url, lambda hit=hit: self._discover_candidate(job.id, hit)) for hit in candidates]
        )

        tally = JobTally()
        results = []
        for hit, run in zip(candidates, runs):
            tally.add(run)
            results.append(self._result_row(hit, run))

        result = tally.to_result()
        result["results"] = results
        return await self._complete_job(job.id, result)

    def _dedupe_candidates(self, hits: Sequence[SearchResult]) -> List[SearchResult]:
        seen = set()
        candidates = []
        for hit in hits:
            if not is_valid_url(hit.url):
                continue
            normalized = normalize_url(hit.url)
            if normalized in seen:
                continue
            seen.add(normalized)
            candidates.append(hit.model_copy(update={"url": normalized}))
            if len(candidates) >= settings.DISCOVERY_MAX_RESULTS:
                break
        return candidates

    async def _discover_candidate(self, job_id: UUID, hit: SearchResult) -> SourceRun:
        async with self.session_factory() as db:
            existing = await self.registry.get_by_url(hit.url, db)
        if existing is not None:
            return await self._update_source(job_id, existing.id)

        if await self._cancel_requested(job_id):
            return SourceRun(status=CANCELLED, url=hit.url)

        result = await self._extract(hit.url, ScrapeConfig(script_type="generic"))
        if not result.success:
            return self._failed_run(result, url=hit.url)

        try:
            async with self.session_factory() as db:
                source = await self.registry.register(
                    hit.url,
                    db,
                    source_type=SourceType.CUSTOM,
                    config=ScrapeConfig(script_type="generic"),
                )
                await db.commit()
                source_id = source.id
            registered = True
        except DuplicateSourceError:
            # Registered by a concurrent job between lookup and insert
            async with self.session_factory() as db:
                source = await self.registry.get_by_url(hit.url, db)
            if source is None:
                raise
            source_id, registered = source.id, False

        key = source_lock_key(source_id)
        try:
            owner = await self.locks.acquire(key)
        except SourceBusyError as e:
            run = SourceRun.from_exception(SKIPPED, e, source_id=source_id, url=hit.url)
            run.registered = registered
            return run

        try:
            run = await self._persist(source_id, hit.url, result)
        finally:
            await self.locks.release(key, owner)
        run.registered = registered
        return run

    @staticmethod
    def _result_row(hit: SearchResult, run: SourceRun) -> Dict[str, Any]:
        price = run.data.price if run.data is not None else hit.price
        currency = run.data.currency if run.data is not None else hit.currency
        row = {
            "url": hit.url,
            "title": (run.data.name if run.data is not None else None) or hit.title,
            "price": str(price) if price is not None else None,
            "currency": currency,
            "domain": hit.domain or extract_domain(hit.url) or "",
            "snippet": hit.snippet,
        }
        return {key: value for key, value in row.items() if value is not None}

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def dispatch_update(
        self,
        source_ids: Optional[Sequence[Union[UUID, str]]] = None,
        all_sources: bool = False,
    ) -> ScrapeJob:
        """
        Re-extract prices for the given sources, or every actionable one.

        Unknown ids become error entries. The job fails only when there is
        nothing at all to update.
        """
        single = source_ids[0] if source_ids and len(source_ids) == 1 else None
        job = await self._open_job(JobType.UPDATE, source_id=await self._existing_source_id(single))
        return await self._guard(job.id, self._update(job, source_ids, all_sources))

    async def _update(
        self,
        job: ScrapeJob,
        source_ids: Optional[Sequence[Union[UUID, str]]],
        all_sources: bool,
    ) -> ScrapeJob:
        tally = JobTally()
        targets: List[UUID] = []
        async with self.session_factory() as db:
            if all_sources:
                targets = [s.id for s in await self.registry.list_actionable(JobType.UPDATE, db)]
            else:
                for raw_id in source_ids or []:
                    try:
                        source = await self.registry.get(self._as_uuid(raw_id), db)
                    except (InvalidInputError, UnknownSourceError):
                        run = SourceRun.from_exception(FAILED, UnknownSourceError(str(raw_id)))
                        run.error["sourceId"] = str(raw_id)
                        tally.add(run)
                        continue
                    if source.id not in targets:
                        targets.append(source.id)

        if not targets and not tally.errors:
            return await self._fail_job(job.id, "No sources to update", tally.to_result())

        runs = await self._run_bounded(
            [
                (source_id, None, lambda source_id=source_id: self._update_source(job.id, source_id))
                for source_id in targets
            ]
        )
        for run in runs:
            tally.add(run)

        return await self._complete_job(job.id, tally.to_result())

    async def _update_source(self, job_id: UUID, source_id: UUID) -> SourceRun:
        """Extract, persist and record the outcome for one source under its lock."""
        if await self._cancel_requested(job_id):
            return SourceRun(status=CANCELLED, source_id=source_id)

        key = source_lock_key(source_id)
        try:
            owner = await self.locks.acquire(key)
        except SourceBusyError as e:
            logger.info("Source busy, skipping", extra={"source_id": str(source_id)})
            return SourceRun.from_exception(SKIPPED, e, source_id=source_id)

        try:
            async with self.session_factory() as db:
                source = await self.registry.get(source_id, db)
            if not source.is_active:
                return SourceRun(
                    status=FAILED,
                    source_id=source_id,
                    url=source.url,
                    error=error_entry(
                        "SOURCE_INACTIVE",
                        "Source is inactive",
                        source_id=source_id,
                        url=source.url,
                    ),
                )

            config = ScrapeConfig.model_validate(source.scrape_config or {})
            result = await self._extract(source.url, config)
            return await self._persist(source_id, source.url, result)
        finally:
            await self.locks.release(key, owner)

    async def _persist(self, source_id: UUID, url: str, result: ScrapingResult) -> SourceRun:
        """
        Store a result for a source whose lock the caller holds.

        Success: catalog upsert and price append commit together, then the
        registry records the success. Failure: the registry records it.
        """
        if not result.success:
            async with self.session_factory() as db:
                await self.registry.record_outcome(
                    source_id,
                    SourceOutcome.failed(result.error.type, result.error.message),
                    db,
                )
                await db.commit()
            return self._failed_run(result, source_id=source_id, url=url)

        data = result.data
        try:
            async with self.locks.hold(CATALOG_LOCK_KEY, wait=True):
                async with self.session_factory() as db:
                    product = await self.catalog.upsert(
                        data,
                        source_id,
                        db,
                        product_url=data.product_url or url,
                    )
                    price = await self.ledger.append(product.id, source_id, data, db)
                    await db.commit()
                    product_id = product.id
        except SourceBusyError as e:
            # Nothing written; source health unchanged
            logger.warning(
                "Catalog busy, result dropped",
                extra={"source_id": str(source_id), "url": url},
            )
            return SourceRun.from_exception(SKIPPED, e, source_id=source_id, url=url)
        except InvalidInputError as e:
            failed = ScrapingResult.fail(FailureType.DATA_VALIDATION, e.message)
            return await self._persist(source_id, url, failed)

        async with self.session_factory() as db:
            await self.registry.record_outcome(source_id, SourceOutcome.succeeded(), db)
            await db.commit()

        logger.info(
            "Source updated",
            extra={
                "source_id": str(source_id),
                "product_id": str(product_id),
                "price": str(price.price),
            },
        )
        return SourceRun(
            status=UPDATED,
            source_id=source_id,
            url=url,
            product_id=product_id,
            data=data,
        )

    # ------------------------------------------------------------------
    # Rediscovery
    # ------------------------------------------------------------------

    async def dispatch_rediscovery(self, source_id: Union[UUID, str]) -> ScrapeJob:
        """
        Regenerate the extraction recipe for one source.

        Success installs the new recipe; failure leaves the source flagged
        for a later retry and fails the job.
        """
        known_id = await self._existing_source_id(source_id)
        job = await self._open_job(JobType.REDISCOVERY, source_id=known_id)
        if known_id is None:
            return await self._fail_job(job.id, f"Unknown source: {source_id}")
        return await self._guard(job.id, self._rediscover(job, known_id))

    async def _rediscover(self, job: ScrapeJob, known_id: UUID) -> ScrapeJob:
        if self.recipe_generator is None:
            return await self._fail_job(job.id, "No recipe generator configured")

        key = source_lock_key(known_id)
        try:
            owner = await self.locks.acquire(key)
        except SourceBusyError as e:
            return await self._fail_job(job.id, e.message)

        try:
            async with self.session_factory() as db:
                source = await self.registry.get(known_id, db)
            previous = ScrapeConfig.model_validate(source.scrape_config or {})

            try:
                recipe = await self.recipe_generator.generate(source.url, previous)
            except RecipeGenerationError as e:
                async with self.session_factory() as db:
                    await self.registry.record_rediscovery_failure(known_id, db)
                    await db.commit()
                return await self._fail_job(job.id, e.message, {"scriptGenerated": False})

            async with self.session_factory() as db:
                await self.registry.update_config(known_id, recipe, db, count_attempt=True)
                await db.commit()
        finally:
            await self.locks.release(key, owner)

        return await self._complete_job(
            job.id,
            {"scriptGenerated": True, "scriptType": recipe.script_type, "errors": []},
        )

    async def dispatch_pending_rediscoveries(self) -> List[ScrapeJob]:
        """Run rediscovery for every source currently flagged for it."""
        async with self.session_factory() as db:
            flagged = [s.id for s in await self.registry.list_actionable(JobType.REDISCOVERY, db)]

        jobs = []
        for source_id in flagged:
            jobs.append(await self.dispatch_rediscovery(source_id))
        return jobs

    # ------------------------------------------------------------------
    # Job bookkeeping
    # ------------------------------------------------------------------

    async def cancel(self, job_id: Union[UUID, str]) -> ScrapeJob:
        """Ask a job to stop before its next source."""
        async with self.session_factory() as db:
            job = await self.jobs.request_cancel(self._as_uuid(job_id), db)
            await db.commit()
        return job

    async def get_job(self, job_id: Union[UUID, str]) -> ScrapeJob:
        async with self.session_factory() as db:
            return await self.jobs.get(self._as_uuid(job_id), db)

    async def _open_job(
        self,
        job_type: JobType,
        source_id: Optional[UUID] = None,
        query: Optional[str] = None,
    ) -> ScrapeJob:
        async with self.session_factory() as db:
            job = await self.jobs.create(job_type, db, source_id=source_id, query=query)
            await self.jobs.start(job.id, db)
            await db.commit()

        set_job_id(str(job.id))
        logger.info("Job started", extra={"job_type": job_type.value})
        return job

    async def _complete_job(self, job_id: UUID, result: Dict[str, Any]) -> ScrapeJob:
        async with self.session_factory() as db:
            job = await self.jobs.complete(job_id, result, db)
            await db.commit()

        logger.info(
            "Job completed",
            extra={
                "job_type": job.job_type,
                "updated": result.get("updated"),
                "failed": result.get("failed"),
                "skipped": result.get("skipped"),
                "error_count": len(result.get("errors", [])),
            },
        )
        set_job_id(None)
        return job

    async def _fail_job(
        self,
        job_id: UUID,
        error: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> ScrapeJob:
        async with self.session_factory() as db:
            job = await self.jobs.fail(job_id, error, db, result=result)
            await db.commit()
        set_job_id(None)
        return job

    async def _guard(self, job_id: UUID, body: Awaitable[ScrapeJob]) -> ScrapeJob:
        """Fail the job if its body crashes, then re-raise."""
        try:
            return await body
        except Exception as e:
            logger.error(
                "Job crashed",
                extra={"error": str(e)},
                exc_info=True,
            )
            await self._fail_job(job_id, "Internal error")
            raise

    async def _cancel_requested(self, job_id: UUID) -> bool:
        async with self.session_factory() as db:
            return await self.jobs.is_cancel_requested(job_id, db)

    async def _existing_source_id(self, raw_id: Optional[Union[UUID, str]]) -> Optional[UUID]:
        if raw_id is None:
            return None
        try:
            source_id = self._as_uuid(raw_id)
        except InvalidInputError:
            return None
        async with self.session_factory() as db:
            try:
                source = await self.registry.get(source_id, db)
            except UnknownSourceError:
                return None
        return source.id

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    async def _run_bounded(
        self,
        tasks: Sequence[Tuple[Optional[UUID], Optional[str], Callable[[], Awaitable[SourceRun]]]],
    ) -> List[SourceRun]:
        """
        Run per-source work with at most ``max_concurrency`` in flight.

        Each task is ``(source_id, url, work)``; the id and url label the
        error entry if ``work`` raises.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(source_id: Optional[UUID], url: Optional[str], task: Callable[[], Awaitable[SourceRun]]) -> SourceRun:
            async with semaphore:
                try:
                    return await task()
                except APIException as e:
                    logger.warning(
                        "Source work failed",
                        extra={
                            "error_code": e.error_code,
                            "error": e.message,
                            "source_id": str(source_id) if source_id else None,
                            "url": url,
                        },
                    )
                    return SourceRun.from_exception(FAILED, e, source_id=source_id, url=url)

        return list(await asyncio.gather(*(run(*task) for task in tasks)))

    async def _extract(self, url: str, config: ScrapeConfig) -> ScrapingResult:
        """Call the extractor with a timeout; every failure comes back typed."""
        try:
            return await asyncio.wait_for(
                self.extractor.extract(url, config),
                timeout=self.extraction_timeout,
            )
        except asyncio.TimeoutError:
            return ScrapingResult.fail(
                FailureType.TIMEOUT,
                f"Extraction exceeded {self.extraction_timeout}s",
            )
        except ExtractionError as e:
            return ScrapingResult.fail(FailureType(e.failure_type), e.message, e.selector)
        except Exception as e:
            logger.error(
                "Extractor raised",
                extra={"url": url, "error": str(e)},
                exc_info=True,
            )
            return ScrapingResult.fail(FailureType.NETWORK_ERROR, str(e) or type(e).__name__)

    @staticmethod
    def _failed_run(
        result: ScrapingResult,
        source_id: Optional[UUID] = None,
        url: Optional[str] = None,
    ) -> SourceRun:
        error = result.error
        return SourceRun(
            status=FAILED,
            source_id=source_id,
            url=url,
            error=error_entry(
                "EXTRACTION_FAILURE",
                error.message or "Extraction failed",
                source_id=source_id,
                url=url,
                failure_type=FailureType(error.type).value,
                selector=error.selector,
            ),
        )

    @staticmethod
    def _as_uuid(value: Union[UUID, str]) -> UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError:
            raise InvalidInputError(f"Invalid id: {value!r}", field="id")


def build_orchestrator(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> JobOrchestrator:
    """Orchestrator wired to the HTTP extractor, SerpAPI and heuristic recipes."""
    from pricetracker.core.database import AsyncSessionLocal
    from pricetracker.services.extractor import HttpExtractor
    from pricetracker.services.recipe_generator import HeuristicRecipeGenerator
    from pricetracker.services.search_provider import SerpApiSearchProvider

    extractor = HttpExtractor()
    return JobOrchestrator(
        session_factory=session_factory or AsyncSessionLocal,
        extractor=extractor,
        search_provider=SerpApiSearchProvider(),
        recipe_generator=HeuristicRecipeGenerator(extractor),
    )


__all__ = ["JobOrchestrator", "JobTally", "SourceRun", "build_orchestrator"]
