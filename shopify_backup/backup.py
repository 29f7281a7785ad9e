"""Back up a whole shop into one dated snapshot directory."""

from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import cast
import asyncio
import logging
import re

from aiohttp import ClientError
from yarl import URL

from .bulk import BulkExporter
from .client import Client
from .errors import ShopifyBackupError
from .jsonl import Json, JsonD, parse_gid
from .pagination import Paginator
from .resources import COLLECTIONS, CUSTOMERS, ORDERS, PRODUCTS, Resource
from .store import Cleanup, Store, prune_snapshots

__all__ = ("RECOVERABLE", "BackupStatus", "Backup")

logger = logging.getLogger(__name__)

# anything one resource can fail with without taking the others down
RECOVERABLE = (ShopifyBackupError, ClientError, OSError)

ACCESS_DENIED = re.compile(r"access[ _]denied", re.IGNORECASE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class BackupStatus:
    backup_dir: str
    started_at: str = field(default_factory=_now)
    completed_at: str = ""
    modules: dict[str, str] = field(default_factory=dict)
    counts: dict[str, int] = field(default_factory=dict)
    images: dict[str, int] = field(
        default_factory=lambda: {"downloaded": 0, "failed": 0}
    )
    failed_images: list[str] = field(default_factory=list)
    cleanup: Cleanup = field(default_factory=Cleanup)
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def succeed(self, module: str, count: int) -> None:
        self.modules[module] = "success"
        self.counts[module] = count

    def fail(self, module: str, error: BaseException) -> None:
        label = module.replace("_", " ").capitalize()
        logger.error("%s backup failed: %s", label, error)
        self.modules[module] = "failed"
        self.counts[module] = 0
        self.errors.append(f"{label} backup failed: {error}")


def _image_ext(url: str) -> str:
    return Path(URL(url).path).suffix or ".jpg"


def _product_dir(product: JsonD) -> str:
    if legacy := product.get("legacyResourceId"):
        return str(legacy)
    if isinstance(rid := product.get("id"), str) and (gid := parse_gid(rid)):
        return gid.id
    return str(product.get("id"))


@dataclass(slots=True)
class Backup:
    client: Client
    store: Store
    exporter: BulkExporter
    paginator: Paginator
    cancel: asyncio.Event | None = None
    image_attempts: int = 3

    async def _guard(
        self, status: BackupStatus, module: str, work: Awaitable[list[JsonD]]
    ) -> list[JsonD]:
        try:
            items = await work
        except RECOVERABLE as e:
            status.fail(module, e)
            return []

        status.succeed(module, len(items))
        return items

    async def bulk(self, resource: Resource) -> list[JsonD]:
        logger.info("Backing up %s", resource.name)
        items = await self.exporter.export(
            resource.query, resource.schema, cancel=self.cancel
        )
        self.store.save(resource.name, cast(Json, items))
        logger.info("Backed up %d %s", len(items), resource.name)
        return items

    async def orders(self) -> list[JsonD]:
        try:
            return await self.bulk(ORDERS)
        except ShopifyBackupError as e:
            # basic plans without protected customer data access get
            # ACCESS_DENIED from bulk operations but can still page the REST api
            if not ACCESS_DENIED.search(str(e)):
                raise
            logger.info("Orders bulk operation denied, falling back to REST API: %s", e)

        orders: list[JsonD] = []

        def collect(page: list[JsonD]) -> None:
            for order in page:
                order.setdefault("metafields", [])
            orders.extend(page)

        await self.paginator.fetch_each("orders", "orders", collect, {"status": "any"})
        self.store.save("orders", cast(Json, orders))
        return orders

    async def paged(self, name: str, path: str | None = None) -> list[JsonD]:
        items = await self.paginator.fetch_all(path or name, name)
        self.store.save(name, cast(Json, items))
        return items

    async def blogs(self) -> list[JsonD]:
        blogs = await self.paginator.fetch_all("blogs", "blogs")
        for blog in blogs:
            blog["articles"] = cast(
                Json,
                await self.paginator.fetch_all(f"blogs/{blog['id']}/articles", "articles"),
            )
        self.store.save("blogs", cast(Json, blogs))
        return blogs

    async def images(self, status: BackupStatus, products: list[JsonD]) -> None:
        downloaded = failed = 0

        for product in products:
            images = cast(list[JsonD], product.get("images") or [])
            product_dir = _product_dir(product)

            for i, image in enumerate(images):
                url = cast(str | None, image.get("url") or image.get("src"))
                if not url:
                    continue

                position = image.get("position") or i + 1
                path = Path("images", product_dir, f"{position}{_image_ext(url)}")
                if self.store.exists(path):
                    continue

                error: BaseException | None = None
                for _ in range(self.image_attempts):
                    try:
                        data = await self.client.download(url)
                    except RECOVERABLE as e:
                        error = e
                        continue

                    self.store.save_bytes(path, data)
                    downloaded += 1
                    break
                else:
                    logger.warning(
                        "Failed to download %s after %d attempts: %s",
                        url,
                        self.image_attempts,
                        error,
                    )
                    failed += 1
                    status.failed_images.append(url)

        status.images = {"downloaded": downloaded, "failed": failed}
        if failed and downloaded:
            status.modules["images"] = "partial"
        elif failed:
            status.modules["images"] = "failed"
        else:
            status.modules["images"] = "success"

    async def run(self, backup_dir: Path, retention_days: int) -> BackupStatus:
        status = BackupStatus(backup_dir=str(self.store.store_dir))

        products = await self._guard(status, "products", self.bulk(PRODUCTS))
        await self._guard(status, "customers", self.bulk(CUSTOMERS))
        await self._guard(status, "orders", self.orders())
        await self._guard(status, "collections", self.bulk(COLLECTIONS))
        await self._guard(status, "pages", self.paged("pages"))
        await self._guard(status, "blogs", self.blogs())
        await self._guard(status, "shop_metafields", self.paged("metafields"))

        try:
            await self.images(status, products)
        except RECOVERABLE as e:
            status.modules["images"] = "failed"
            status.errors.append(f"Image download failed: {e}")

        try:
            status.cleanup = prune_snapshots(backup_dir, retention_days)
        except OSError as e:
            status.errors.append(f"Cleanup failed: {e}")

        status.completed_at = _now()
        self.store.save("status", cast(Json, asdict(status)))
        return status
