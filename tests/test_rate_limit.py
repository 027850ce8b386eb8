import asyncio
from concurrent.futures import ThreadPoolExecutor

import httpx
from limits.storage import MemoryStorage

from chat_proxy.rate_limit import ChatRateLimiter, rate_limit_headers

THROTTLED = {"error": "too many requests from this address, please retry later."}


def test_limiter_denies_after_budget(clock):
    limiter = ChatRateLimiter(max_requests=3, window_seconds=60)

    decisions = [limiter.hit("10.0.0.1") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]


def test_limiter_keys_are_independent(clock):
    limiter = ChatRateLimiter(max_requests=1, window_seconds=60)

    assert limiter.hit("a").allowed
    assert not limiter.hit("a").allowed
    assert limiter.hit("b").allowed


def test_window_resets_only_after_it_elapses(clock):
    limiter = ChatRateLimiter(max_requests=2, window_seconds=60)
    limiter.hit("a")
    limiter.hit("a")

    clock.advance(59)
    denied = limiter.hit("a")
    assert not denied.allowed
    assert denied.reset_after == 1

    clock.advance(1)
    allowed = limiter.hit("a")
    assert allowed.allowed
    assert allowed.remaining == 1
    assert allowed.reset_after == 60


def test_reset_clears_one_or_all_keys(clock):
    limiter = ChatRateLimiter(max_requests=1, window_seconds=60)
    limiter.hit("a")
    limiter.hit("b")

    limiter.reset("a")
    assert limiter.hit("a").allowed
    assert not limiter.hit("b").allowed

    limiter.reset()
    assert limiter.hit("a").allowed
    assert limiter.hit("b").allowed


def test_limiter_uses_the_given_storage(clock):
    storage = MemoryStorage()
    first = ChatRateLimiter(max_requests=1, window_seconds=60, storage=storage)
    second = ChatRateLimiter(max_requests=1, window_seconds=60, storage=storage)

    assert first.hit("a").allowed
    assert not second.hit("a").allowed


def test_limiter_is_race_free_across_threads(clock):
    limiter = ChatRateLimiter(max_requests=100, window_seconds=900)

    with ThreadPoolExecutor(max_workers=16) as pool:
        decisions = list(pool.map(lambda _: limiter.hit("burst"), range(200)))

    assert sum(d.allowed for d in decisions) == 100


def test_rate_limit_headers(clock):
    limiter = ChatRateLimiter(max_requests=1, window_seconds=900)

    assert rate_limit_headers(limiter.hit("a")) == {
        "X-RateLimit-Limit": "1",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "900",
    }
    clock.advance(0.5)
    headers = rate_limit_headers(limiter.hit("a"))
    assert headers["Retry-After"] == "900"


def test_101st_chat_request_is_throttled_until_window_ends(client, upstream, clock):
    for _ in range(100):
        assert client.post("/api/chat", json={"message": "hi"}).status_code == 200

    throttled = client.post("/api/chat", json={"message": "hi"})
    assert throttled.status_code == 429
    assert throttled.json() == THROTTLED
    assert throttled.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in throttled.headers
    assert len(upstream.requests) == 100

    clock.advance(15 * 60)
    response = client.post("/api/chat", json={"message": "hi"})
    assert response.status_code == 200
    assert response.headers["X-RateLimit-Remaining"] == "99"


def test_invalid_requests_count_against_budget(client, upstream):
    for _ in range(100):
        assert client.post("/api/chat", json={}).status_code == 400

    response = client.post("/api/chat", json={"message": "hi"})

    assert response.status_code == 429
    assert upstream.requests == []


def test_health_is_not_rate_limited(client):
    for _ in range(120):
        assert client.get("/api/health").status_code == 200
    assert "X-RateLimit-Limit" not in client.get("/api/health").headers


def test_concurrent_burst_lets_at_most_budget_through(app, upstream):
    async def burst():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            return await asyncio.gather(
                *(client.post("/api/chat", json={"message": "hi"}) for _ in range(200))
            )

    responses = asyncio.run(burst())
    statuses = [r.status_code for r in responses]

    assert statuses.count(200) == 100
    assert statuses.count(429) == 100
    assert len(upstream.requests) == 100
