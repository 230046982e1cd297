import httpx
import pytest

from onemeal.api.routes import get_ingestion_service, get_rate_limiter, get_redis, get_summary_service
from onemeal.main import app
from onemeal.services.rate_limiter import RateLimiter
from onemeal.services.summary import SummaryService
from onemeal.utils.clock import day_label
from tests.support import new_anonymous_id


@pytest.fixture
async def client(redis_client, repository, ingestion, policy, clock):
    app.state.redis = redis_client
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(repository, policy, clock)
    app.dependency_overrides[get_ingestion_service] = lambda: ingestion
    app.dependency_overrides[get_summary_service] = lambda: SummaryService(repository, clock=clock, cache_seconds=0)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    app.dependency_overrides.clear()


async def test_submit_feed(client):
    response = await client.post(
        "/api/feed", json={"lat": 12.9716, "lng": 77.5946, "anonymousId": new_anonymous_id()}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"].startswith("Feed recorded!")
    assert body["data"]["todayTotal"] == 1
    assert len(body["data"]["feedId"]) == 32
    assert "timestamp" in body["data"]
    assert response.headers["X-XSS-Protection"] == "1; mode=block"
    assert response.headers["X-DNS-Prefetch-Control"] == "on"
    assert "X-Request-ID" in response.headers


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"lat": 91, "lng": 0, "anonymousId": "4f1c2b0e-8d3a-4b6e-9a57-2c1d0e9f8a7b"}, "lat"),
        ({"lat": 0, "lng": -180.5, "anonymousId": "4f1c2b0e-8d3a-4b6e-9a57-2c1d0e9f8a7b"}, "lng"),
        ({"lat": 0, "lng": 0, "anonymousId": "not-a-uuid"}, "anonymousId"),
        ({"lat": 0, "lng": 0}, "anonymousId"),
    ],
)
async def test_submit_feed_validation(client, redis_client, keys, payload, field):
    response = await client.post("/api/feed", json=payload)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "INVALID_DATA"
    assert any(f["loc"][-1] == field for f in detail["fields"])
    assert await redis_client.zcard(keys.events) == 0


async def test_submit_feed_rate_limited(client, redis_client, keys):
    anon = new_anonymous_id()
    for _ in range(10):
        ok = await client.post("/api/feed", json={"lat": 1.0, "lng": 2.0, "anonymousId": anon})
        assert ok.status_code == 201

    response = await client.post("/api/feed", json={"lat": 1.0, "lng": 2.0, "anonymousId": anon})

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["error"] == "RATE_LIMIT_EXCEEDED"
    assert "10 feeds per day" in detail["detail"]
    assert await redis_client.zcard(keys.events) == 10


async def test_submit_feed_store_failure(client, redis_client, keys, clock):
    await redis_client.set(keys.day(day_label(clock.now)), "not-a-hash")

    response = await client.post(
        "/api/feed", json={"lat": 12.9716, "lng": 77.5946, "anonymousId": new_anonymous_id()}
    )

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error"] == "INGESTION_FAILED"
    assert "WRONGTYPE" not in response.text
    assert await redis_client.zcard(keys.events) == 0


async def test_describe_feed(client):
    response = await client.get("/api/feed")

    assert response.status_code == 200
    assert response.json()["requiredFields"] == ["lat", "lng", "anonymousId"]


async def test_summary(client):
    for anon in (new_anonymous_id(), new_anonymous_id()):
        await client.post("/api/feed", json={"lat": 12.9716, "lng": 77.5946, "anonymousId": anon})

    response = await client.get("/api/summary")

    assert response.status_code == 200
    assert response.headers["Cache-Control"].startswith("public, s-maxage=")
    body = response.json()
    assert body["range"] == "today"
    assert body["stats"] == {
        "totalFeeds": 2,
        "uniqueFeeders": 2,
        "totalImpact": 2,
        "today": {"feeds": 2, "feeders": 2},
    }
    assert body["heatmap"][0]["lat"] == 12.97
    assert body["heatmap"][0]["lng"] == 77.59
    assert body["heatmap"][0]["intensity"] == 2
    assert body["heatmap"][0]["lastFeed"] is not None
    assert body["trending"][0]["totalFeeds"] == 2
    assert body["trending"][0]["uniqueFeeders"] == 2
    assert "date" in body["trending"][0]
    assert body["message"]


async def test_summary_unknown_range(client):
    response = await client.get("/api/summary", params={"range": "year"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "INVALID_DATA"


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
