import asyncio

from order_lifecycle.infrastructure.token_cache import TokenCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Login:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        return f"token-{self.calls}"


async def test_concurrent_callers_share_one_login():
    login = Login()
    cache = TokenCache(login, ttl_seconds=60)

    tokens = await asyncio.gather(*(cache.get() for _ in range(10)))

    assert login.calls == 1
    assert set(tokens) == {"token-1"}


async def test_token_refreshes_after_ttl():
    login, clock = Login(), Clock()
    cache = TokenCache(login, ttl_seconds=60, clock=clock)

    assert await cache.get() == "token-1"
    clock.now = 59
    assert await cache.get() == "token-1"
    clock.now = 61
    assert await cache.get() == "token-2"


async def test_invalidate_forces_login():
    login = Login()
    cache = TokenCache(login, ttl_seconds=60)

    await cache.get()
    cache.invalidate()
    assert await cache.get() == "token-2"
