"""Shared fakes: scripted transport, recording clock and scripted random source."""

import json
import random
from collections import deque
from typing import Any, Dict, List, Optional

import pytest

from ratelimit_probe.config import ProbeSettings
from ratelimit_probe.generators import PayloadFactory
from ratelimit_probe.metrics import MetricSinks
from ratelimit_probe.probe import EndpointProbe
from ratelimit_probe.transport import HttpResponse


def response(status: int = 200, body: Any = None, latency_ms: float = 50.0,
             headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)
    return HttpResponse(status=status, latency_ms=latency_ms, body=body or "", headers=headers or {})


def token_response(token: str = "tok-123", status: int = 200) -> HttpResponse:
    return response(status, {"success": True, "data": {"access_token": token}})


def rate_limited_response(retry_after: Optional[int] = None) -> HttpResponse:
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else {}
    return response(429, {"success": False, "message": "Too many requests"}, headers=headers)


class FakeTransport:
    """Returns scripted responses in order, then ``default``; records every call."""

    def __init__(self, responses=(), default: Optional[HttpResponse] = None):
        self.responses = deque(responses)
        self.default = default or response(200, {"success": True})
        self.requests: List[Dict[str, Any]] = []

    async def request(self, method, url, headers=None, payload=None) -> HttpResponse:
        self.requests.append({"method": method, "url": url, "headers": headers or {}, "payload": payload})
        if self.responses:
            return self.responses.popleft()
        return self.default

    def paths(self, base_url: str = "http://api.test") -> List[str]:
        return [r["url"][len(base_url):] for r in self.requests]


class FakeClock:
    """Records sleeps and advances virtual time instead of waiting."""

    def __init__(self):
        self.current = 0.0
        self.sleeps: List[float] = []

    async def sleep(self, units: float) -> None:
        if units <= 0:
            return
        self.sleeps.append(units)
        self.current += units

    def now(self) -> float:
        return self.current

    def to_seconds(self, units: float) -> float:
        return units


class ScriptedRandom(random.Random):
    """``random()`` draws from a queue first, then from the seeded generator."""

    def __init__(self, draws=(), seed: int = 7):
        super().__init__(seed)
        self.draws = deque(draws)

    def random(self) -> float:
        if self.draws:
            return self.draws.popleft()
        return super().random()

    # Keeps randint/choice on getrandbits so they never consume scripted draws.
    def getrandbits(self, k: int) -> int:
        return super().getrandbits(k)


@pytest.fixture
def settings() -> ProbeSettings:
    return ProbeSettings(base_url="http://api.test", seed=1)


@pytest.fixture
def sinks() -> MetricSinks:
    return MetricSinks()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_probe(settings, sinks, clock):
    def factory(transport, draws=(), tags=None, endpoints=None):
        rng = ScriptedRandom(draws)
        return EndpointProbe(
            transport, settings, sinks, clock, rng,
            PayloadFactory(rng, settings.credentials),
            endpoints=endpoints, tags=tags,
        )
    return factory
