"""In-memory test doubles shared by the unit and integration tests."""

import asyncio
import json
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional, Union

from redis.exceptions import ConnectionError as RedisConnectionError

from polaris.interfaces.backend import GenerationBackend
from polaris.types import BackendRequest, BackendResponse, TokenUsage


class FakeClock:
    """Manually advanced epoch-milliseconds clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# FakeRedis: the subset of redis.asyncio.Redis the adapters use
# ---------------------------------------------------------------------------


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops: List[tuple] = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> List[Any]:
        results = []
        for name, args, kwargs in self._ops:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._ops = []
        return results


class FakeRedis:
    """Dict-backed async Redis stand-in (decode_responses=True semantics)."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expiries: Dict[str, int] = {}
        self.pings = 0
        self.closed = False

    async def ping(self) -> bool:
        self.pings += 1
        return True

    async def aclose(self) -> None:
        self.closed = True

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self.data[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            elif self.zsets.pop(key, None) is not None:
                removed += 1
            self.expiries.pop(key, None)
        return removed

    async def exists(self, key: str) -> int:
        return int(key in self.data or key in self.zsets)

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.data and key not in self.zsets:
            return False
        self.expiries[key] = seconds
        return True

    async def pexpire(self, key: str, ms: int) -> bool:
        return await self.expire(key, max(1, ms // 1000))

    async def ttl(self, key: str) -> int:
        if key not in self.data and key not in self.zsets:
            return -2
        return self.expiries.get(key, -1)

    async def incr(self, key: str) -> int:
        return await self.incrby(key, 1)

    async def incrby(self, key: str, amount: int) -> int:
        value = int(self.data.get(key, "0")) + amount
        self.data[key] = str(value)
        return value

    async def keys(self, pattern: str) -> List[str]:
        return [k for k in list(self.data) + list(self.zsets) if fnmatchcase(k, pattern)]

    async def zremrangebyscore(self, key: str, low: float, high: float) -> int:
        zset = self.zsets.get(key, {})
        doomed = [m for m, score in zset.items() if low <= score <= high]
        for m in doomed:
            del zset[m]
        return len(doomed)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in zset)
        zset.update(mapping)
        return added

    async def zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        return sum(1 for m in members if zset.pop(m, None) is not None)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    # Test convenience
    def put_json(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value)

    def load_json(self, key: str) -> Any:
        return json.loads(self.data[key])


class _FailingPipeline:
    def __getattr__(self, name):
        def queue(*args, **kwargs):
            return self

        return queue

    async def execute(self):
        raise RedisConnectionError("Connection refused")


class FailingRedis:
    """Client whose every command fails as if the server went away."""

    def __init__(self):
        self.calls = 0

    def pipeline(self, transaction: bool = True) -> _FailingPipeline:
        return _FailingPipeline()

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            self.calls += 1
            raise RedisConnectionError("Connection refused")

        return fail


# ---------------------------------------------------------------------------
# Generation backends
# ---------------------------------------------------------------------------


def make_blueprint(title: str = "Onboarding Blueprint") -> Dict[str, Any]:
    return {
        "metadata": {
            "title": title,
            "organization": "Acme",
            "role": "L&D Lead",
            "generated_at": "2024-01-01T00:00:00+00:00",
        },
        "executive_summary": {"content": "Summary", "displayType": "markdown"},
        "learning_objectives": {"objectives": [{"title": "Ship safely"}]},
        "resources": {"human_resources": [{"role": "Trainer"}], "displayType": "table"},
    }


Outcome = Union[str, BaseException]


class ScriptedBackend(GenerationBackend):
    """Backend that replays a script of outcomes, one per call.

    A string outcome is returned as the response text. An exception outcome
    is raised. The last outcome repeats once the script runs out.
    """

    def __init__(
        self,
        name: str = "scripted",
        outcomes: Optional[List[Outcome]] = None,
        configured: bool = True,
        delay: float = 0.0,
    ):
        self._name = name
        self._outcomes = outcomes or [json.dumps(make_blueprint())]
        self._configured = configured
        self._delay = delay
        self.requests: List[BackendRequest] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request: BackendRequest) -> BackendResponse:
        self.requests.append(request)
        if self._delay:
            await asyncio.sleep(self._delay)
        index = min(len(self.requests) - 1, len(self._outcomes) - 1)
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return BackendResponse(
            text=outcome,
            usage=TokenUsage(input_units=100, output_units=200),
            model=request.model,
            stop_reason="end_turn",
        )

    async def close(self) -> None:
        self.closed = True
