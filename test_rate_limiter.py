"""
Unit tests for the per-user send rate limiter.

Tests:
- Requests under the quota are counted and allowed
- Over quota is refused with a Retry-After
- Disabled limiter never touches Redis
- Send endpoints answer 429 when the limiter refuses
"""

import jwt
import pytest
from fastapi.testclient import TestClient

from engage_service.main import app
from services.rate_limiter import RateLimiter


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    async def execute(self):
        for op in self.ops:
            if op[0] == "incr":
                self.store[op[1]] = str(int(self.store.get(op[1], "0")) + 1)
            else:
                self.store.setdefault("_ttl", {})[op[1]] = op[2]
        return [True] * len(self.ops)


class FakeRedis:
    """Just enough of redis.asyncio for the limiter."""

    def __init__(self):
        self.store = {}
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        return self.store.get(key)

    def pipeline(self):
        return FakePipeline(self.store)


class ExhaustedRedis(FakeRedis):
    async def get(self, key):
        return "99"


def _limiter(redis, per_minute=2):
    limiter = RateLimiter(client=redis, per_minute=per_minute)
    limiter.enabled = True
    # One counter per user and endpoint regardless of the clock minute
    limiter._key = lambda user_id, endpoint, now: f"{user_id}:{endpoint}"
    return limiter


@pytest.mark.asyncio
async def test_allows_until_quota():
    redis = FakeRedis()
    limiter = _limiter(redis)

    assert await limiter.check_rate_limit("user-1", "campaign_send") == (True, None)
    assert await limiter.check_rate_limit("user-1", "campaign_send") == (True, None)

    allowed, retry_after = await limiter.check_rate_limit("user-1", "campaign_send")
    assert allowed is False, "Third request in the same minute should be refused"
    assert 1 <= retry_after <= 60

    # Separate counters per user and endpoint
    assert (await limiter.check_rate_limit("user-2", "campaign_send"))[0] is True
    assert (await limiter.check_rate_limit("user-1", "conversation_send"))[0] is True
    assert 60 in redis.store["_ttl"].values()


@pytest.mark.asyncio
async def test_disabled_limiter():
    redis = FakeRedis()
    limiter = RateLimiter(client=redis, per_minute=1)
    limiter.enabled = False

    for _ in range(3):
        assert await limiter.check_rate_limit("user-1", "campaign_send") == (True, None)
    assert redis.calls == 0


def test_send_endpoint_returns_429(db, monkeypatch, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(make_contact("+6281234567890"))
    limiter = _limiter(ExhaustedRedis(), per_minute=1)
    monkeypatch.setattr("services.rate_limiter.get_rate_limiter", lambda: limiter)
    token = jwt.encode(
        {"sub": agent.id, "email": agent.email, "aud": "authenticated"}, "test-jwt-secret", algorithm="HS256"
    )

    response = TestClient(app).post(
        f"/api/conversations/{conversation.id}/messages",
        json={"message": "Hi"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 429, f"Expected 429, got {response.status_code}"
    assert response.headers["Retry-After"]
