"""Tests for discovery, update and rediscovery jobs."""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from pricetracker.core.config import settings
from pricetracker.core.exceptions import UnknownSourceError
from pricetracker.core.identity import SteppingClock
from pricetracker.models.enums import FailureType, JobStatus, JobType
from pricetracker.models.price import Price
from pricetracker.models.scrape_source import ScrapeSource
from pricetracker.models.scraping import ScrapeConfig, SearchResult
from pricetracker.services.source_locks import CATALOG_LOCK_KEY, source_lock_key
from tests.conftest import (
    START,
    StubExtractor,
    StubRecipeGenerator,
    StubSearchProvider,
    failure_result,
    product_result,
)


async def price_rows(session_factory, source_id=None):
    async with session_factory() as session:
        query = select(Price).order_by(Price.scraped_at.desc())
        if source_id is not None:
            query = query.where(Price.source_id == source_id)
        result = await session.execute(query)
        return list(result.scalars().all())


async def load_source(session_factory, source_id) -> ScrapeSource:
    async with session_factory() as session:
        return await session.get(ScrapeSource, source_id)


async def register(session_factory, registry, url: str) -> ScrapeSource:
    async with session_factory() as session:
        source = await registry.register(url, session, source_type="ecommerce")
        await session.commit()
    return source


def observed_results(**fields):
    """Responder producing a fresh observation (one minute apart) per call."""
    observed = SteppingClock(START, timedelta(minutes=1))
    return lambda url, config: product_result(scraped_at=observed(), **fields)


class TestDispatchUpdate:
    """Tests for update jobs."""

    async def test_successful_update(self, session_factory, make_orchestrator, source) -> None:
        """Register, update with a succeeding extractor: one price, job completed."""
        orchestrator = make_orchestrator(StubExtractor(product_result()))

        job = await orchestrator.dispatch_update([str(source.id)])

        assert job.status == JobStatus.COMPLETED.value
        assert job.job_type == JobType.UPDATE.value
        assert job.source_id == source.id
        assert job.result["updated"] == 1
        assert job.result["failed"] == 0
        assert job.result["errors"] == []

        prices = await price_rows(session_factory)
        assert len(prices) == 1
        assert prices[0].price == Decimal("19.99")
        assert prices[0].currency == "USD"

        refreshed = await load_source(session_factory, source.id)
        assert refreshed.last_scraped_at is not None
        assert refreshed.success_rate > 0.7

    async def test_repeated_updates_append_history(self, session_factory, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(StubExtractor(observed_results()))

        for _ in range(4):
            job = await orchestrator.dispatch_update([source.id])
            assert job.result["updated"] == 1

        prices = await price_rows(session_factory)
        assert len(prices) == 4
        assert len({row.scraped_at for row in prices}) == 4
        assert len({row.product_id for row in prices}) == 1
        times = [row.scraped_at for row in prices]
        assert times == sorted(times, reverse=True)

    async def test_structural_failures_flag_rediscovery(self, session_factory, make_orchestrator, source) -> None:
        """Three selector failures: no prices, failed each time, source flagged."""
        orchestrator = make_orchestrator(StubExtractor(failure_result()))

        for attempt in range(3):
            job = await orchestrator.dispatch_update([source.id])
            assert job.status == JobStatus.COMPLETED.value
            assert job.result["failed"] == 1
            assert job.result["updated"] == 0
            error = job.result["errors"][0]
            assert error["failureType"] == "selector_not_found"
            assert error["selector"] == ".price"
            assert error["sourceId"] == str(source.id)

        assert await price_rows(session_factory) == []
        refreshed = await load_source(session_factory, source.id)
        assert refreshed.needs_rediscovery is True
        assert refreshed.is_active is True

    async def test_unknown_ids_are_reported(self, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(StubExtractor(product_result()))

        job = await orchestrator.dispatch_update([str(source.id), str(UUID(int=999)), "not-a-uuid"])

        assert job.status == JobStatus.COMPLETED.value
        assert job.result["updated"] == 1
        assert job.result["failed"] == 2
        codes = sorted(error["errorCode"] for error in job.result["errors"])
        assert codes == ["UNKNOWN_SOURCE", "UNKNOWN_SOURCE"]
        assert {error["sourceId"] for error in job.result["errors"]} == {
            str(UUID(int=999)),
            "not-a-uuid",
        }

    async def test_only_unknown_ids_still_completes(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(StubExtractor(product_result()))

        job = await orchestrator.dispatch_update([str(UUID(int=999))])

        assert job.status == JobStatus.COMPLETED.value
        assert job.source_id is None
        assert job.result["failed"] == 1

    async def test_nothing_to_update_fails_job(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(StubExtractor(product_result()))

        job = await orchestrator.dispatch_update([])

        assert job.status == JobStatus.FAILED.value
        assert job.result["error"] == "No sources to update"

    async def test_all_sources_skips_inactive(
        self, session_factory, registry, make_orchestrator
    ) -> None:
        healthy = await register(session_factory, registry, "https://shop.test/a")
        retired = await register(session_factory, registry, "https://shop.test/b")
        async with session_factory() as session:
            await registry.set_active(retired.id, False, session)
            await session.commit()

        extractor = StubExtractor(product_result())
        job = await make_orchestrator(extractor).dispatch_update(all_sources=True)

        assert job.result["updated"] == 1
        assert extractor.calls == [healthy.url]

    async def test_inactive_source_by_id_is_failed(self, session_factory, registry, make_orchestrator, source) -> None:
        async with session_factory() as session:
            await registry.set_active(source.id, False, session)
            await session.commit()
        extractor = StubExtractor(product_result())

        job = await make_orchestrator(extractor).dispatch_update([source.id])

        assert job.result["failed"] == 1
        assert job.result["errors"][0]["errorCode"] == "SOURCE_INACTIVE"
        assert extractor.calls == []

    async def test_extraction_timeout(self, session_factory, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result(), delay=1.0),
            extraction_timeout=0.05,
        )

        job = await orchestrator.dispatch_update([source.id])

        assert job.result["failed"] == 1
        assert job.result["errors"][0]["failureType"] == "timeout"
        refreshed = await load_source(session_factory, source.id)
        assert refreshed.consecutive_failures == 1
        assert refreshed.structural_failures == 0

    async def test_extractor_crash_becomes_network_error(self, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(StubExtractor(RuntimeError("socket closed")))

        job = await orchestrator.dispatch_update([source.id])

        assert job.status == JobStatus.COMPLETED.value
        assert job.result["errors"][0]["failureType"] == "network_error"

    async def test_negative_price_is_a_validation_failure(self, session_factory, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(StubExtractor(product_result(price="-1.00")))

        job = await orchestrator.dispatch_update([source.id])

        assert job.result["failed"] == 1
        assert job.result["errors"][0]["failureType"] == FailureType.DATA_VALIDATION.value
        assert await price_rows(session_factory) == []
        refreshed = await load_source(session_factory, source.id)
        assert refreshed.structural_failures == 1

    async def test_concurrent_updates_never_interleave(self, session_factory, make_orchestrator, source) -> None:
        """While one job holds the source, another skips it with SourceBusy."""
        gate = asyncio.Event()
        extractor = StubExtractor(observed_results(), gate=gate)
        orchestrator = make_orchestrator(extractor)

        first = asyncio.create_task(orchestrator.dispatch_update([source.id]))
        await asyncio.wait_for(extractor.started.wait(), timeout=5)

        second = await orchestrator.dispatch_update([source.id])
        gate.set()
        first = await first

        assert first.result["updated"] == 1
        assert second.status == JobStatus.COMPLETED.value
        assert second.result["skipped"] == 1
        assert second.result["updated"] == 0
        assert second.result["errors"][0]["errorCode"] == "SOURCE_BUSY"
        assert len(extractor.calls) == 1
        assert len(await price_rows(session_factory)) == 1

    async def test_concurrency_is_bounded(self, session_factory, registry, make_orchestrator) -> None:
        sources = [await register(session_factory, registry, f"https://shop.test/{n}") for n in range(4)]
        in_flight = 0
        peak = 0

        class CountingExtractor:
            async def extract(self, url, config):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.02)
                in_flight -= 1
                return product_result(name=f"Item {url[-1]} gadget", category=url[-1])

        orchestrator = make_orchestrator(CountingExtractor(), max_concurrency=2)
        job = await orchestrator.dispatch_update([s.id for s in sources])

        assert job.result["updated"] == 4
        assert peak <= 2

    async def test_busy_catalog_skips_without_touching_health(
        self, monkeypatch, session_factory, locks, make_orchestrator, source
    ) -> None:
        """A catalog held elsewhere past the wait timeout skips the source, labelled and unlocked."""
        monkeypatch.setattr(settings, "LOCK_WAIT_TIMEOUT", 0.2)
        orchestrator = make_orchestrator(StubExtractor(product_result()))
        await locks.acquire(CATALOG_LOCK_KEY)

        job = await orchestrator.dispatch_update([source.id])

        assert job.status == JobStatus.COMPLETED.value
        assert job.result["skipped"] == 1
        assert job.result["updated"] == 0
        error = job.result["errors"][0]
        assert error["errorCode"] == "SOURCE_BUSY"
        assert error["sourceId"] == str(source.id)
        assert error["url"] == source.url
        assert await price_rows(session_factory) == []

        refreshed = await load_source(session_factory, source.id)
        assert refreshed.consecutive_failures == 0
        assert refreshed.success_rate == pytest.approx(settings.SUCCESS_RATE_NEUTRAL)
        assert await locks.try_acquire(source_lock_key(source.id), "next-worker")

    async def test_raised_work_is_labelled_with_its_source(self, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(StubExtractor(product_result()))

        async def vanished():
            raise UnknownSourceError(str(source.id))

        runs = await orchestrator._run_bounded([(source.id, source.url, vanished)])

        assert runs[0].status == "failed"
        assert runs[0].error["sourceId"] == str(source.id)
        assert runs[0].error["url"] == source.url


class TestCancellation:
    """Tests for cooperative cancellation."""

    async def test_cancel_stops_remaining_sources(self, session_factory, registry, jobs, make_orchestrator) -> None:
        first = await register(session_factory, registry, "https://shop.test/a")
        second = await register(session_factory, registry, "https://shop.test/b")
        gate = asyncio.Event()
        extractor = StubExtractor(product_result(), gate=gate)
        orchestrator = make_orchestrator(extractor, max_concurrency=1)

        task = asyncio.create_task(orchestrator.dispatch_update([first.id, second.id]))
        await asyncio.wait_for(extractor.started.wait(), timeout=5)

        async with session_factory() as session:
            running = await jobs.list_jobs(session, job_type=JobType.UPDATE)
        await orchestrator.cancel(running[0].id)
        gate.set()
        job = await task

        assert job.status == JobStatus.COMPLETED.value
        assert job.cancel_requested is True
        assert job.result["updated"] == 1
        assert job.result["cancelled"] is True
        assert job.result["cancelledSources"] == [str(second.id)]
        assert extractor.calls == [first.url]

    async def test_cancel_finished_job_rejected(self, make_orchestrator, source) -> None:
        from pricetracker.core.exceptions import InvalidJobTransitionError

        orchestrator = make_orchestrator(StubExtractor(product_result()))
        job = await orchestrator.dispatch_update([source.id])

        with pytest.raises(InvalidJobTransitionError):
            await orchestrator.cancel(job.id)


class TestDispatchDiscovery:
    """Tests for discovery jobs."""

    async def test_discovery_registers_and_prices(self, session_factory, make_orchestrator) -> None:
        hits = [
            SearchResult(url="https://shop.test/widget?utm_source=serp", title="Widget", domain="shop.test"),
            SearchResult(url="https://shop.test/widget", title="Widget again", domain="shop.test"),
            SearchResult(url="https://broken.test/item", title="Broken", domain="broken.test", snippet="n/a"),
            SearchResult(url="not a url", title="Junk"),
        ]

        def respond(url, config):
            assert config.script_type == "generic"
            if "broken" in url:
                return failure_result(FailureType.BLOCKED, "HTTP 403", selector=None)
            return product_result()

        extractor = StubExtractor(respond)
        orchestrator = make_orchestrator(extractor, search_provider=StubSearchProvider(hits))

        job = await orchestrator.dispatch_discovery("  acme widget  ")

        assert job.status == JobStatus.COMPLETED.value
        assert job.query == "  acme widget  "
        assert job.result["sourcesRegistered"] == 1
        assert job.result["productsFound"] == 1
        assert job.result["pricesUpdated"] == 1
        assert job.result["failed"] == 1
        assert job.result["errors"][0]["failureType"] == "blocked"

        rows = job.result["results"]
        assert [row["url"] for row in rows] == ["https://shop.test/widget", "https://broken.test/item"]
        assert rows[0]["price"] == "19.99"
        assert rows[0]["currency"] == "USD"
        assert rows[0]["domain"] == "shop.test"
        assert rows[1]["snippet"] == "n/a"

        async with session_factory() as session:
            result = await session.execute(select(ScrapeSource.url, ScrapeSource.source_type))
            assert result.all() == [("https://shop.test/widget", "custom")]
        assert len(await price_rows(session_factory)) == 1

    async def test_discovery_reuses_known_sources(self, session_factory, make_orchestrator, source) -> None:
        extractor = StubExtractor(product_result())
        hits = [SearchResult(url=source.url, title="Widget", domain="shop.test")]
        orchestrator = make_orchestrator(extractor, search_provider=StubSearchProvider(hits))

        job = await orchestrator.dispatch_discovery("widget")

        assert job.result["sourcesRegistered"] == 0
        assert job.result["pricesUpdated"] == 1
        async with session_factory() as session:
            assert (await session.execute(select(func.count()).select_from(ScrapeSource))).scalar_one() == 1

    @pytest.mark.parametrize("query", ["", "   ", None, 42])
    async def test_invalid_query_fails_job(self, make_orchestrator, query) -> None:
        search = StubSearchProvider([])
        orchestrator = make_orchestrator(StubExtractor(product_result()), search_provider=search)

        job = await orchestrator.dispatch_discovery(query)

        assert job.status == JobStatus.FAILED.value
        assert "non-empty" in job.result["error"]
        assert search.queries == []

    async def test_search_failure_fails_job(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result()),
            search_provider=StubSearchProvider(fail=True),
        )

        job = await orchestrator.dispatch_discovery("widget")

        assert job.status == JobStatus.FAILED.value
        assert job.result["error"] == "search backend down"

    async def test_no_hits_completes_empty(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result()),
            search_provider=StubSearchProvider([]),
        )

        job = await orchestrator.dispatch_discovery("widget")

        assert job.status == JobStatus.COMPLETED.value
        assert job.result["results"] == []
        assert job.result["productsFound"] == 0


class TestDispatchRediscovery:
    """Tests for rediscovery jobs."""

    async def test_new_recipe_installed(self, session_factory, make_orchestrator, source) -> None:
        generator = StubRecipeGenerator(ScrapeConfig(script_type="jsonld"))
        orchestrator = make_orchestrator(StubExtractor(failure_result()), recipe_generator=generator)
        for _ in range(3):
            await orchestrator.dispatch_update([source.id])

        job = await orchestrator.dispatch_rediscovery(source.id)

        assert job.status == JobStatus.COMPLETED.value
        assert job.job_type == JobType.REDISCOVERY.value
        assert job.result["scriptGenerated"] is True
        assert job.result["scriptType"] == "jsonld"
        refreshed = await load_source(session_factory, source.id)
        assert refreshed.needs_rediscovery is False
        assert refreshed.scrape_config["script_type"] == "jsonld"
        assert refreshed.success_rate == pytest.approx(settings.SUCCESS_RATE_NEUTRAL)
        assert generator.calls == [source.url]
        assert refreshed.rediscovery_attempts == 1

    async def test_generation_failure_fails_job(self, session_factory, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result()),
            recipe_generator=StubRecipeGenerator(None),
        )

        job = await orchestrator.dispatch_rediscovery(str(source.id))

        assert job.status == JobStatus.FAILED.value
        assert job.result["scriptGenerated"] is False
        refreshed = await load_source(session_factory, source.id)
        assert refreshed.needs_rediscovery is True
        assert refreshed.rediscovery_attempts == 1

        await orchestrator.dispatch_rediscovery(source.id)
        assert (await load_source(session_factory, source.id)).is_active is False

    async def test_unknown_source_fails_job(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result()),
            recipe_generator=StubRecipeGenerator(ScrapeConfig()),
        )

        job = await orchestrator.dispatch_rediscovery(UUID(int=999))

        assert job.status == JobStatus.FAILED.value
        assert job.source_id is None
        assert "Unknown source" in job.result["error"]

    async def test_busy_source_fails_job(self, locks, make_orchestrator, source) -> None:
        orchestrator = make_orchestrator(
            StubExtractor(product_result()),
            recipe_generator=StubRecipeGenerator(ScrapeConfig(script_type="jsonld")),
        )
        await locks.acquire(source_lock_key(source.id))

        job = await orchestrator.dispatch_rediscovery(source.id)

        assert job.status == JobStatus.FAILED.value
        assert "busy" in job.result["error"].lower()

    async def test_pending_rediscoveries_cover_flagged_sources(
        self, session_factory, registry, make_orchestrator
    ) -> None:
        flagged = await register(session_factory, registry, "https://shop.test/a")
        await register(session_factory, registry, "https://shop.test/b")
        orchestrator = make_orchestrator(
            StubExtractor(failure_result()),
            recipe_generator=StubRecipeGenerator(ScrapeConfig(script_type="opengraph")),
        )
        for _ in range(3):
            await orchestrator.dispatch_update([flagged.id])

        jobs = await orchestrator.dispatch_pending_rediscoveries()

        assert [job.source_id for job in jobs] == [flagged.id]
        assert jobs[0].status == JobStatus.COMPLETED.value


class TestJobCrash:
    """Tests for unexpected errors inside a job."""

    async def test_crash_fails_job_and_propagates(self, session_factory, jobs, make_orchestrator) -> None:
        class ExplodingSearch:
            async def search(self, query, limit):
                raise RuntimeError("unexpected")

        orchestrator = make_orchestrator(StubExtractor(product_result()), search_provider=ExplodingSearch())

        with pytest.raises(RuntimeError):
            await orchestrator.dispatch_discovery("widget")

        async with session_factory() as session:
            (job,) = await jobs.list_jobs(session)
        assert job.status == JobStatus.FAILED.value
        assert job.result == {"error": "Internal error"}
