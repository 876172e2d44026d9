import os
import sys
import asyncio
import inspect

import pytest
import redis

# Ensure project root is on sys.path so `import app` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        # Filter only the parameters that the test function expects
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


class FakeClock:
    def __init__(self, now: float = 1_741_593_600.0):  # 2025-03-10T08:00:00Z
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    def __init__(self, store: "FakeRedis"):
        self.store = store
        self.ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.ops.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        return [getattr(self.store, name)(*args, **kwargs) for name, args, kwargs in self.ops]


class FakeRedis:
    """The slice of redis.Redis the app uses, with expiry driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data = {}
        self.expires = {}
        self.zsets = {}
        self.fail = False
        self.set_calls = []

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("redis down")

    def _alive(self, key):
        exp = self.expires.get(key)
        if exp is not None and self.clock() >= exp:
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return key in self.data

    def ping(self):
        self._check()
        return True

    def set(self, key, value, ex=None):
        self._check()
        self.set_calls.append((key, ex))
        self.data[key] = value
        if ex is not None:
            self.expires[key] = self.clock() + ex
        return True

    def get(self, key):
        self._check()
        return self.data[key] if self._alive(key) else None

    def ttl(self, key):
        if not self._alive(key):
            return -2
        exp = self.expires.get(key)
        return -1 if exp is None else int(exp - self.clock())

    def pipeline(self):
        self._check()
        return FakePipeline(self)

    def zremrangebyscore(self, key, low, high):
        z = self.zsets.setdefault(key, {})
        for member in [m for m, s in z.items() if low <= s <= high]:
            del z[member]

    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def expire(self, key, seconds):
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


def segment(origin, destination, carrier="BA", number="75", dep="2025-03-10T08:00:00",
            arr="2025-03-10T14:00:00", duration="PT6H"):
    return {
        "departure": {"iataCode": origin, "at": dep},
        "arrival": {"iataCode": destination, "at": arr},
        "carrierCode": carrier,
        "number": number,
        "duration": duration,
    }


def offer(offer_id, total, itineraries, currency="NGN", carriers=("BA",)):
    return {
        "type": "flight-offer",
        "id": str(offer_id),
        "source": "GDS",
        "itineraries": itineraries,
        "price": {"currency": currency, "total": str(total), "base": str(total), "grandTotal": str(total)},
        "validatingAirlineCodes": list(carriers),
        "numberOfBookableSeats": 9,
        "travelerPricings": [{"travelerId": "1", "travelerType": "ADULT"}],
    }


@pytest.fixture
def make_segment():
    return segment


@pytest.fixture
def make_offer():
    return offer
