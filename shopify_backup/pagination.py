"""Cursor pagination over the Shopify REST API."""

from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from inspect import isawaitable
from typing import Protocol, cast

from .client import Page
from .jsonl import JsonD
from .retry import Executor

__all__ = ("PAGE_SIZE", "PageFetcher", "Paginator")

PAGE_SIZE = 250


class PageFetcher(Protocol):
    def __call__(
        self, path: str, query: Mapping[str, object] | None = None
    ) -> Awaitable[Page]: ...


@dataclass(slots=True)
class Paginator:
    get: PageFetcher
    executor: Executor = field(default_factory=Executor)
    page_size: int = PAGE_SIZE

    async def pages(
        self,
        path: str,
        key: str,
        filters: Mapping[str, object] | None = None,
    ) -> AsyncGenerator[list[JsonD], None]:
        query: dict[str, object] = {"limit": self.page_size, **(filters or {})}

        while True:
            page = await self.executor.execute(lambda: self.get(path, query))

            items = page.body.get(key)
            yield cast(list[JsonD], items) if isinstance(items, list) else []

            if not page.next_query:
                break

            # shopify rejects the original filters once page_info is present,
            # so from here on only the cursor (and page size) are sent
            query = {"limit": self.page_size, **page.next_query}

    async def fetch_each(
        self,
        path: str,
        key: str,
        on_page: Callable[[list[JsonD]], Awaitable[None] | None],
        filters: Mapping[str, object] | None = None,
    ) -> int:
        count = 0
        async with aclosing(self.pages(path, key, filters)) as pages:
            async for items in pages:
                count += len(items)
                if isawaitable(result := on_page(items)):
                    await result
        return count

    async def fetch_all(
        self,
        path: str,
        key: str,
        filters: Mapping[str, object] | None = None,
    ) -> list[JsonD]:
        items: list[JsonD] = []
        async with aclosing(self.pages(path, key, filters)) as pages:
            async for page in pages:
                items.extend(page)
        return items
