"""aiohttp transport for the Shopify Admin GraphQL and REST APIs."""

from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from types import TracebackType
from typing import cast

from aiohttp import ClientResponse, ClientSession, TCPConnector
from yarl import URL

from .errors import DownloadError, HTTPStatusError
from .jsonl import JsonD

__all__ = ("API_VERSION", "Client", "Page")

# the queries in resources.py are written against this version
API_VERSION = "2025-01"


@dataclass(frozen=True, slots=True)
class Page:
    body: JsonD
    next_query: dict[str, str] | None = None


def _query_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _raise_for_status(r: ClientResponse) -> None:
    if r.status in range(200, 300):
        return

    retry_after = None
    with suppress(TypeError, ValueError):
        retry_after = float(r.headers.get("Retry-After"))  # pyright: ignore[reportArgumentType]

    raise HTTPStatusError(r.status, r.reason, url=str(r.url), retry_after=retry_after)


@dataclass(slots=True)
class Client:
    shop: str
    access_token: str
    api_version: str = API_VERSION
    connections: int = 4
    base_url: URL = field(init=False)
    session: ClientSession = field(init=False)

    def __post_init__(self):
        shop = self.shop.strip().rstrip("/")
        self.base_url = URL(shop if "://" in shop else f"https://{shop}")
        self.session = ClientSession(
            headers={"Accept": "application/json"},
            connector=TCPConnector(limit=self.connections),
        )

    async def __aenter__(self):
        await self.session.__aenter__()

        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return await self.session.__aexit__(exc_type, exc_val, exc_tb)

    @property
    def api_url(self) -> URL:
        return self.base_url.joinpath("admin", "api", self.api_version)

    @property
    def _auth(self) -> dict[str, str]:
        # only ever sent to the shop itself, never to download urls
        return {"X-Shopify-Access-Token": self.access_token}

    async def graphql(self, query: str, variables: JsonD | None = None) -> JsonD:
        async with self.session.post(
            self.api_url / "graphql.json",
            json={"query": query, "variables": variables or {}},
            headers=self._auth,
            allow_redirects=False,
        ) as r:
            _raise_for_status(r)
            return cast(JsonD, await r.json())

    async def rest_get(self, path: str, query: Mapping[str, object] | None = None) -> Page:
        url = self.api_url.joinpath(*f"{path}.json".split("/")).with_query(
            {k: _query_value(v) for k, v in (query or {}).items()}
        )

        async with self.session.get(url, headers=self._auth, allow_redirects=False) as r:
            _raise_for_status(r)
            body = cast(JsonD, await r.json())

            # rest pagination lives in the Link header, e.g.
            # <https://shop/admin/api/2025-01/orders.json?limit=250&page_info=x>; rel="next"
            next_query = None
            if link := r.links.get("next"):
                next_query = dict(cast(URL, link["url"]).query)

            return Page(body, next_query)

    async def download(self, url: str) -> bytes:
        async with self.session.get(url) as r:
            if r.status not in range(200, 300):
                raise DownloadError(r.status, r.reason, url=url)
            return await r.read()
