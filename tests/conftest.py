from collections.abc import Mapping
from dataclasses import dataclass, field
import asyncio

import pytest

from shopify_backup.client import Page
from shopify_backup.jsonl import JsonD
from shopify_backup.retry import Executor, RateLimiter, RetryPolicy


class FakeClock:
    """Virtual time: sleeping advances now instead of waiting."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor(clock: FakeClock) -> Executor:
    # min_interval=0 keeps limiter sleeps out of clock.sleeps
    return Executor(
        policy=RetryPolicy(),
        limiter=RateLimiter(min_interval=0, clock=clock, sleep=clock.sleep),
        sleep=clock.sleep,
    )


def gid(entity: str, n: int) -> str:
    return f"gid://shopify/{entity}/{n}"


@dataclass
class FakeShop:
    """GraphQL side of the API, answering from a script."""

    responses: list[JsonD | Exception] = field(default_factory=list)
    files: dict[str, bytes | Exception] = field(default_factory=dict)
    queries: list[tuple[str, JsonD | None]] = field(default_factory=list)
    downloads: list[str] = field(default_factory=list)

    async def graphql(self, query: str, variables: JsonD | None = None) -> JsonD:
        self.queries.append((query, variables))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def download(self, url: str) -> bytes:
        self.downloads.append(url)
        data = self.files[url]
        if isinstance(data, Exception):
            raise data
        return data


@dataclass
class FakeRest:
    """REST side of the API: path -> pages, served in order."""

    pages: dict[str, list[Page | Exception]] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    async def get(self, path: str, query: Mapping[str, object] | None = None) -> Page:
        self.calls.append((path, dict(query or {})))
        page = self.pages[path].pop(0)
        if isinstance(page, Exception):
            raise page
        return page


def submitted(job_id: str = gid("BulkOperation", 1)) -> JsonD:
    return {
        "data": {
            "bulkOperationRunQuery": {
                "bulkOperation": {"id": job_id, "status": "CREATED"},
                "userErrors": [],
            }
        }
    }


def current(
    status: str,
    *,
    url: str | None = None,
    object_count: str = "0",
    error_code: str | None = None,
    job_id: str = gid("BulkOperation", 1),
) -> JsonD:
    return {
        "data": {
            "currentBulkOperation": {
                "id": job_id,
                "status": status,
                "errorCode": error_code,
                "objectCount": object_count,
                "url": url,
                "createdAt": "2024-01-01T00:00:00Z",
                "completedAt": None,
                "fileSize": None,
                "query": "{ orders { edges { node { id } } } }",
                "rootObjectCount": object_count,
            }
        }
    }
