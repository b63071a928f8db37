import asyncio
import inspect
import math
import os
import sys
from pathlib import Path

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")
os.environ.setdefault("CACHE_PREFIX", "warden-test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402
from redis.exceptions import ResponseError  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from warden.service.runtime import reset_runtime_for_tests  # noqa: E402
from warden.service.tokens import TokenAuthority  # noqa: E402
from warden.storage.coordination import CoordinationStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"
T0 = 1_700_000_000


class FakeClock:
    """Settable stand-in for time.time."""

    def __init__(self, now: float = T0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with decode_responses=True.

    Expiry follows ``self.clock`` so tests can move time forward. The two
    Lua scripts registered by CoordinationStore are emulated; each fake
    command runs without awaiting, so it is atomic on the event loop just
    as the real commands are on the server.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.available = True
        self.closed = False
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}

    def _check(self) -> None:
        if not self.available:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def _purge(self, key: str) -> None:
        expires_at = self.expiry.get(key)
        if expires_at is not None and expires_at <= self.clock():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def _incr(self, key: str, amount: int) -> int:
        self._purge(key)
        try:
            value = int(self.data.get(key, "0")) + amount
        except ValueError:
            raise ResponseError("value is not an integer or out of range") from None
        self.data[key] = str(value)
        return value

    async def get(self, key):
        self._check()
        self._purge(key)
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        self._purge(key)
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        if ex:
            self.expiry[key] = self.clock() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def exists(self, *keys):
        self._check()
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.data
        return count

    async def ttl(self, key):
        self._check()
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return math.ceil(self.expiry[key] - self.clock())

    async def decrby(self, key, amount):
        self._check()
        return self._incr(key, -amount)

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True

    def register_script(self, script):
        return _FakeScript(self, script)


class _FakeScript:
    def __init__(self, redis: FakeRedis, script: str):
        self.redis = redis
        self.script = script

    async def __call__(self, keys=None, args=None, client=None):
        redis = self.redis
        redis._check()
        key = keys[0]
        if self.script == CoordinationStore._INCREMENT_SCRIPT:
            by, ttl = int(args[0]), int(args[1])
            redis._purge(key)
            created = key not in redis.data
            value = redis._incr(key, by)
            if created and ttl > 0:
                redis.expiry[key] = redis.clock() + ttl
            return value
        if self.script == CoordinationStore._RELEASE_LOCK_SCRIPT:
            redis._purge(key)
            if redis.data.get(key) == args[0]:
                redis.data.pop(key, None)
                redis.expiry.pop(key, None)
                return 1
            return 0
        raise NotImplementedError("script not emulated by FakeRedis")


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def store(fake_redis):
    return CoordinationStore(fake_redis, "svc")


@pytest.fixture
def fast_hasher():
    """Argon2id with minimal cost so hashing does not dominate the suite."""
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1, type=Type.ID)


@pytest.fixture
def authority(clock, fast_hasher):
    return TokenAuthority(
        TEST_SECRET,
        access_ttl_seconds=900,
        clock=clock,
        hasher=fast_hasher,
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
