"""HTTP tests for the FastAPI application."""

from uuid import UUID, uuid4

import httpx
import pytest

from pricetracker.api.main import create_application
from pricetracker.api.routes import sources as sources_routes
from pricetracker.core.database import get_db
from pricetracker.models.scraping import ScrapeConfig, SearchResult
from tests.conftest import StubExtractor, StubRecipeGenerator, StubSearchProvider, product_result


@pytest.fixture
def orchestrator(make_orchestrator):
    hits = [SearchResult(url="https://found.test/widget", title="Widget", domain="found.test")]
    return make_orchestrator(
        StubExtractor(product_result()),
        search_provider=StubSearchProvider(hits),
        recipe_generator=StubRecipeGenerator(ScrapeConfig(script_type="jsonld")),
    )


@pytest.fixture
def app(orchestrator, session_factory):
    application = create_application(orchestrator=orchestrator)

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def create_source(client, url: str = "https://shop.test/x") -> dict:
    response = await client.post("/sources", json={"url": url, "sourceType": "ecommerce"})
    assert response.status_code == 201
    return response.json()


async def update_source(client, source_id: str) -> dict:
    response = await client.post("/update", json={"sourceIds": [source_id]})
    assert response.status_code == 200
    return response.json()


def assert_error(response, status_code: int, error_code: str) -> dict:
    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["errorCode"] == error_code
    assert body["error"]
    assert body["requestId"]
    return body


class TestSources:
    """Tests for /sources."""

    async def test_create_source(self, client) -> None:
        body = await create_source(client)

        assert body["url"] == "https://shop.test/x"
        assert body["domain"] == "shop.test"
        assert body["sourceType"] == "ecommerce"
        assert body["isActive"] is True
        assert body["needsRediscovery"] is False
        assert body["scrapeConfig"]["scriptType"] == "generic"
        assert body["scrapeConfig"]["successRate"] == pytest.approx(0.7)
        UUID(body["id"])

    async def test_duplicate_source(self, client) -> None:
        await create_source(client)

        response = await client.post("/sources", json={"url": "https://shop.test/x"})

        assert_error(response, 409, "DUPLICATE_SOURCE")

    async def test_malformed_url(self, client) -> None:
        response = await client.post("/sources", json={"url": "not a url"})
        assert_error(response, 400, "INVALID_INPUT")

    @pytest.mark.parametrize(
        "payload",
        [{}, {"url": 42}, {"url": "https://shop.test/y", "sourceType": "warehouse"}],
    )
    async def test_request_validation(self, client, payload) -> None:
        response = await client.post("/sources", json=payload)

        body = assert_error(response, 400, "INVALID_INPUT")
        assert body["errors"]

    async def test_get_and_list(self, client) -> None:
        created = await create_source(client)
        await create_source(client, "https://shop.test/y")

        single = await client.get("/sources", params={"id": created["id"]})
        listed = await client.get("/sources")

        assert single.json()["id"] == created["id"]
        assert len(listed.json()) == 2

    async def test_unknown_source(self, client) -> None:
        response = await client.get("/sources", params={"id": str(uuid4())})
        assert_error(response, 404, "UNKNOWN_SOURCE")

    async def test_deactivate(self, client) -> None:
        created = await create_source(client)

        response = await client.patch(f"/sources/{created['id']}", json={"isActive": False})
        active = await client.get("/sources", params={"active": "true"})

        assert response.status_code == 200
        assert response.json()["isActive"] is False
        assert active.json() == []

    async def test_replace_recipe(self, client) -> None:
        """Hand-edited recipes reset the prior without counting as rediscovery attempts."""
        created = await create_source(client)

        for script_type in ("jsonld", "opengraph", "jsonld"):
            response = await client.patch(
                f"/sources/{created['id']}",
                json={"scrapeConfig": {"scriptType": script_type}},
            )
            assert response.status_code == 200

        body = response.json()
        assert body["scrapeConfig"]["scriptType"] == "jsonld"
        assert body["scrapeConfig"]["successRate"] == pytest.approx(0.7)
        assert body["rediscoveryAttempts"] == 0
        assert body["isActive"] is True

    async def test_rediscover_inline(self, client) -> None:
        created = await create_source(client)

        response = await client.post(f"/sources/{created['id']}/rediscover")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["scriptGenerated"] is True
        UUID(body["jobId"])

    async def test_rediscover_unknown_source(self, client) -> None:
        response = await client.post(f"/sources/{uuid4()}/rediscover")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert "Unknown source" in body["error"]

    async def test_rediscover_in_background(self, client, monkeypatch) -> None:
        sent = []

        async def fake_send_event(name, data, ts=None):
            sent.append((name, data))
            return ["evt-1"]

        monkeypatch.setattr(sources_routes, "send_event", fake_send_event)
        created = await create_source(client)

        response = await client.post(
            f"/sources/{created['id']}/rediscover",
            params={"background": "true"},
        )

        assert response.status_code == 202
        assert response.json() == {
            "success": True,
            "scriptGenerated": False,
            "queued": True,
            "eventIds": ["evt-1"],
        }
        assert sent == [(sources_routes.REDISCOVERY_REQUESTED, {"source_id": created["id"]})]


class TestUpdateAndJobs:
    """Tests for /update and /jobs."""

    async def test_update_source(self, client) -> None:
        created = await create_source(client)

        body = await update_source(client, created["id"])

        assert body["success"] is True
        assert body["updated"] == 1
        assert body["failed"] == 0
        assert "errors" not in body

        job = (await client.get(f"/jobs/{body['jobId']}")).json()
        assert job["status"] == "completed"
        assert job["jobType"] == "update"
        assert job["sourceId"] == created["id"]
        assert job["result"]["pricesUpdated"] == 1

    async def test_update_unknown_ids(self, client) -> None:
        response = await client.post("/update", json={"sourceIds": [str(uuid4())]})

        body = response.json()
        assert body["success"] is True
        assert body["failed"] == 1
        assert body["errors"][0]["errorCode"] == "UNKNOWN_SOURCE"

    async def test_update_nothing(self, client) -> None:
        response = await client.post("/update", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "No sources to update"

    async def test_update_all(self, client) -> None:
        await create_source(client)
        await create_source(client, "https://shop.test/y")

        body = (await client.post("/update", json={"all": True})).json()

        assert body["updated"] == 2

    async def test_update_rejects_non_string_ids(self, client) -> None:
        response = await client.post("/update", json={"sourceIds": [1]})
        assert_error(response, 400, "INVALID_INPUT")

    async def test_unknown_job(self, client) -> None:
        response = await client.get(f"/jobs/{uuid4()}")
        assert_error(response, 404, "UNKNOWN_JOB")

    async def test_malformed_job_id(self, client) -> None:
        response = await client.get("/jobs/not-a-uuid")
        assert_error(response, 400, "INVALID_INPUT")

    async def test_cancel_finished_job(self, client) -> None:
        created = await create_source(client)
        body = await update_source(client, created["id"])

        response = await client.post(f"/jobs/{body['jobId']}/cancel")

        assert_error(response, 409, "INVALID_JOB_TRANSITION")


class TestDiscover:
    """Tests for /discover."""

    async def test_discover(self, client) -> None:
        response = await client.post("/discover", json={"query": "widget"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["results"] == [
            {
                "url": "https://found.test/widget",
                "title": "Widget",
                "price": "19.99",
                "currency": "USD",
                "domain": "found.test",
            }
        ]
        listed = (await client.get("/sources")).json()
        assert [source["url"] for source in listed] == ["https://found.test/widget"]

    @pytest.mark.parametrize("payload", [{}, {"query": 5}, {"query": None}])
    async def test_missing_or_non_string_query(self, client, payload) -> None:
        response = await client.post("/discover", json=payload)
        assert_error(response, 400, "INVALID_INPUT")

    async def test_blank_query_fails_job(self, client) -> None:
        response = await client.post("/discover", json={"query": "   "})

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is False
        assert "non-empty" in body["error"]


class TestProducts:
    """Tests for /products."""

    async def test_product_detail_and_history(self, client) -> None:
        created = await create_source(client)
        await update_source(client, created["id"])
        await update_source(client, created["id"])

        products = (await client.get("/products")).json()
        assert len(products) == 1
        assert products[0]["name"] == "Widget"

        detail = (await client.get("/products", params={"id": products[0]["id"]})).json()
        assert len(detail["prices"]) == 2
        assert detail["prices"][0]["price"] == "19.99"
        assert detail["prices"][0]["source"]["url"] == created["url"]
        assert len(detail["currentPrices"]) == 1
        assert detail["sources"][0]["sourceId"] == created["id"]

        history = await client.get(
            f"/products/{products[0]['id']}/history",
            params={"sourceId": created["id"], "limit": 1},
        )
        assert history.status_code == 200
        assert history.json()["sourceId"] == created["id"]
        assert len(history.json()["prices"]) == 1

    async def test_delete_product(self, client) -> None:
        created = await create_source(client)
        await update_source(client, created["id"])
        product_id = (await client.get("/products")).json()[0]["id"]

        response = await client.delete(f"/products/{product_id}")

        assert response.status_code == 204
        assert_error(await client.get("/products", params={"id": product_id}), 404, "UNKNOWN_PRODUCT")
        assert (await client.get("/sources", params={"id": created["id"]})).status_code == 200

    async def test_history_of_unknown_product(self, client) -> None:
        response = await client.get(f"/products/{uuid4()}/history")
        assert_error(response, 404, "UNKNOWN_PRODUCT")


class TestApplication:
    """Tests for health, root and error plumbing."""

    async def test_root(self, client) -> None:
        body = (await client.get("/")).json()
        assert body["name"] == "Price Tracker API"
        assert body["health"] == "/health"

    async def test_health(self, client) -> None:
        assert (await client.get("/health")).json()["status"] == "healthy"
        assert (await client.get("/health/live")).json() == {"status": "alive"}
        assert (await client.get("/health/ready")).json() == {"status": "ready"}

    async def test_detailed_health(self, client) -> None:
        body = (await client.get("/health/detailed")).json()

        assert body["status"] == "healthy"
        assert body["components"]["database"]["status"] == "healthy"
        assert body["components"]["inngest"]["status"] == "disabled"

    async def test_request_id_echoed(self, client) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_unknown_route(self, client) -> None:
        response = await client.get("/nope")
        assert_error(response, 404, "HTTP_404")

    async def test_unexpected_error(self, make_orchestrator, session_factory) -> None:
        class ExplodingSearch:
            async def search(self, query, limit):
                raise RuntimeError("boom")

        application = create_application(
            orchestrator=make_orchestrator(StubExtractor(product_result()), search_provider=ExplodingSearch())
        )
        transport = httpx.ASGITransport(app=application, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            response = await http.post("/discover", json={"query": "widget"})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["errorCode"] == "INTERNAL_SERVER_ERROR"
        assert body["error"] == "Internal server error"
