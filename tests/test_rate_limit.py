from types import SimpleNamespace

import pytest

from skillify.core.errors import RateLimited
from skillify.core.rate_limit import RateLimiter


def client_request(host="10.0.0.1"):
    return SimpleNamespace(client=SimpleNamespace(host=host))


async def test_fixed_window_per_ip(kv, redis):
    limiter = RateLimiter("login", max_requests=5, window_seconds=300)

    for _ in range(5):
        await limiter(client_request(), kv)
    with pytest.raises(RateLimited) as exc:
        await limiter(client_request(), kv)

    assert exc.value.status_code == 429
    assert 0 < await redis.ttl("rate_limit:login:10.0.0.1") <= 300
    # another client keeps its own budget
    await limiter(client_request("10.0.0.2"), kv)


async def test_scopes_do_not_share_counters(kv):
    login = RateLimiter("login", max_requests=1)
    register = RateLimiter("register", max_requests=1)

    await login(client_request(), kv)
    await register(client_request(), kv)


async def test_fails_open_when_cache_is_down(broken_kv):
    limiter = RateLimiter("login", max_requests=1)

    for _ in range(3):
        await limiter(client_request(), broken_kv)


async def test_window_expiry_is_set_with_the_first_hit(kv, redis, monkeypatch):
    async def refuse(*args, **kwargs):
        raise AssertionError("EXPIRE must not be issued on its own")

    monkeypatch.setattr(redis, "expire", refuse)
    limiter = RateLimiter("register", max_requests=5, window_seconds=120)

    await limiter(client_request(), kv)
    await limiter(client_request(), kv)

    assert await redis.get("rate_limit:register:10.0.0.1") == "2"
    assert 0 < await redis.ttl("rate_limit:register:10.0.0.1") <= 120
