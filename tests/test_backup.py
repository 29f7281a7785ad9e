from dataclasses import dataclass, field
from pathlib import Path
import asyncio
import json

import pytest

from shopify_backup.backup import Backup
from shopify_backup.bulk import BulkExporter
from shopify_backup.client import Page
from shopify_backup.errors import (
    DownloadError,
    HTTPStatusError,
    JobFailure,
    PollingTimeout,
)
from shopify_backup.jsonl import JsonD, Schema
from shopify_backup.pagination import Paginator
from shopify_backup.retry import Executor
from shopify_backup.store import Store

from conftest import FakeClock, FakeRest, FakeShop, current, gid, submitted

MUG_FRONT = "https://cdn.example.com/files/mug.png?v=3"
MUG_BACK = "https://cdn.example.com/files/mug-back"


@dataclass
class FakeExporter:
    """Bulk exports by root type: results or the error to raise."""

    results: dict[str, list[JsonD] | Exception] = field(default_factory=dict)
    exported: list[str] = field(default_factory=list)

    async def export(
        self, query: str, schema: Schema, *, cancel: asyncio.Event | None = None
    ) -> list[JsonD]:
        self.exported.append(schema.root)
        result = self.results.get(schema.root, [])
        if isinstance(result, Exception):
            raise result
        return result


def product(n: int, *urls: str, legacy: bool = True) -> JsonD:
    p: JsonD = {"id": gid("Product", n), "images": [{"url": url} for url in urls]}
    if legacy:
        p["legacyResourceId"] = str(n)
    return p


@pytest.fixture
def shop() -> FakeShop:
    return FakeShop()


@pytest.fixture
def rest() -> FakeRest:
    return FakeRest(
        pages={
            "pages": [Page({"pages": [{"id": 1, "title": "About"}]})],
            "blogs": [Page({"blogs": []})],
            "metafields": [Page({"metafields": [{"id": 9, "key": "theme"}]})],
        }
    )


@pytest.fixture
def exporter() -> FakeExporter:
    return FakeExporter()


@pytest.fixture
def backup(
    tmp_path: Path, shop: FakeShop, rest: FakeRest, exporter: FakeExporter, executor: Executor
) -> Backup:
    return Backup(
        client=shop,  # pyright: ignore[reportArgumentType]
        store=Store.snapshot(tmp_path),
        exporter=exporter,  # pyright: ignore[reportArgumentType]
        paginator=Paginator(rest.get, executor=executor),
    )


def load(backup: Backup, name: str):
    return json.loads((backup.store.store_dir / f"{name}.json").read_text())


@pytest.mark.asyncio
async def test_full_backup(
    backup: Backup, tmp_path: Path, shop: FakeShop, rest: FakeRest, exporter: FakeExporter
):
    exporter.results = {
        "Product": [product(1, MUG_FRONT, MUG_BACK)],
        "Customer": [{"id": gid("Customer", 1), "addresses": []}],
        "Order": [{"id": gid("Order", 1)}, {"id": gid("Order", 2)}],
        "Collection": [],
    }
    rest.pages["blogs"] = [Page({"blogs": [{"id": 3, "title": "News"}]})]
    rest.pages["blogs/3/articles"] = [Page({"articles": [{"id": 5}]})]
    shop.files = {MUG_FRONT: b"front", MUG_BACK: b"back"}

    status = await backup.run(tmp_path, 30)

    assert not status.failed
    assert status.modules == {
        "products": "success",
        "customers": "success",
        "orders": "success",
        "collections": "success",
        "pages": "success",
        "blogs": "success",
        "shop_metafields": "success",
        "images": "success",
    }
    assert status.counts["orders"] == 2
    assert exporter.exported == ["Product", "Customer", "Order", "Collection"]

    assert len(load(backup, "orders")) == 2
    assert load(backup, "collections") == []
    assert load(backup, "pages") == [{"id": 1, "title": "About"}]
    assert load(backup, "blogs") == [{"id": 3, "title": "News", "articles": [{"id": 5}]}]
    assert load(backup, "metafields") == [{"id": 9, "key": "theme"}]

    images = backup.store.store_dir / "images" / "1"
    assert (images / "1.png").read_bytes() == b"front"
    assert (images / "2.jpg").read_bytes() == b"back"
    assert status.images == {"downloaded": 2, "failed": 0}

    saved = load(backup, "status")
    assert saved["modules"] == status.modules
    assert saved["errors"] == []
    assert saved["completed_at"]


@pytest.mark.asyncio
async def test_orders_fall_back_to_rest_when_access_denied(
    backup: Backup, tmp_path: Path, rest: FakeRest, exporter: FakeExporter
):
    exporter.results["Order"] = JobFailure("FAILED", "ACCESS_DENIED")
    rest.pages["orders"] = [
        Page({"orders": [{"id": 1}]}, {"page_info": "next"}),
        Page({"orders": [{"id": 2, "metafields": [{"key": "gift"}]}]}),
    ]

    status = await backup.run(tmp_path, 30)

    assert status.modules["orders"] == "success"
    assert status.counts["orders"] == 2
    assert not status.failed
    assert load(backup, "orders") == [
        {"id": 1, "metafields": []},
        {"id": 2, "metafields": [{"key": "gift"}]},
    ]
    assert ("orders", {"limit": 250, "status": "any"}) in rest.calls


@pytest.mark.asyncio
async def test_failures_are_recorded_per_resource(
    backup: Backup, tmp_path: Path, rest: FakeRest, exporter: FakeExporter
):
    exporter.results = {
        "Product": [product(1)],
        "Customer": PollingTimeout(600),
        "Order": JobFailure("FAILED", "INTERNAL_SERVER_ERROR"),
    }
    rest.pages["pages"] = [HTTPStatusError(404)]

    status = await backup.run(tmp_path, 30)

    assert status.failed
    assert status.modules["products"] == "success"
    assert status.modules["customers"] == "failed"
    assert status.modules["orders"] == "failed"
    assert status.modules["pages"] == "failed"
    assert status.modules["blogs"] == "success"
    assert status.counts["customers"] == 0
    assert status.errors == [
        "Customers backup failed: Polling timeout after 600s",
        "Orders backup failed: Bulk operation FAILED (INTERNAL_SERVER_ERROR)",
        "Pages backup failed: HTTP 404 Not Found",
    ]
    assert "orders" not in [path for path, _ in rest.calls]
    assert load(backup, "status")["errors"] == status.errors


@pytest.mark.asyncio
async def test_existing_images_skipped_and_failures_retried(
    backup: Backup,
    tmp_path: Path,
    shop: FakeShop,
    exporter: FakeExporter,
    caplog: pytest.LogCaptureFixture,
):
    exporter.results["Product"] = [product(7, MUG_FRONT, MUG_BACK, legacy=False)]
    shop.files = {MUG_BACK: DownloadError(500, url=MUG_BACK)}
    backup.store.save_bytes(Path("images", "7", "1.png"), b"already here")

    status = await backup.run(tmp_path, 30)

    assert shop.downloads == [MUG_BACK] * 3
    assert status.images == {"downloaded": 0, "failed": 1}
    assert status.modules["images"] == "failed"
    assert status.failed_images == [MUG_BACK]
    assert f"Failed to download {MUG_BACK}: 500 Internal Server Error" in caplog.text
    assert (backup.store.store_dir / "images" / "7" / "1.png").read_bytes() == b"already here"


@pytest.mark.asyncio
async def test_some_images_downloaded_is_partial(
    backup: Backup, tmp_path: Path, shop: FakeShop, exporter: FakeExporter
):
    exporter.results["Product"] = [product(7, MUG_FRONT, MUG_BACK)]
    shop.files = {MUG_FRONT: b"front", MUG_BACK: DownloadError(500, url=MUG_BACK)}

    status = await backup.run(tmp_path, 30)

    assert status.images == {"downloaded": 1, "failed": 1}
    assert status.modules["images"] == "partial"


@pytest.mark.asyncio
async def test_old_snapshots_are_pruned(backup: Backup, tmp_path: Path):
    (tmp_path / "2001-01-01").mkdir()

    status = await backup.run(tmp_path, 30)

    assert status.cleanup.deleted == ["2001-01-01"]
    assert status.cleanup.kept == [backup.store.store_dir.name]
    assert not (tmp_path / "2001-01-01").exists()


@pytest.mark.asyncio
async def test_undecodable_bulk_result_fails_only_that_resource(
    tmp_path: Path, shop: FakeShop, rest: FakeRest, executor: Executor, clock: FakeClock
):
    customers_url = "https://storage.example.com/bulk/customers.jsonl"
    shop.responses = [
        submitted(gid("BulkOperation", 1)),
        current("COMPLETED", job_id=gid("BulkOperation", 1)),
        submitted(gid("BulkOperation", 2)),
        current("COMPLETED", url=customers_url, object_count="1", job_id=gid("BulkOperation", 2)),
        submitted(gid("BulkOperation", 3)),
        current("COMPLETED", job_id=gid("BulkOperation", 3)),
        submitted(gid("BulkOperation", 4)),
        current("COMPLETED", job_id=gid("BulkOperation", 4)),
    ]
    shop.files = {customers_url: b'{"id": "gid://shopify/Customer/1", "note": "\xff"}\n'}
    backup = Backup(
        client=shop,  # pyright: ignore[reportArgumentType]
        store=Store.snapshot(tmp_path),
        exporter=BulkExporter(shop, executor=executor, clock=clock, sleep=clock.sleep),
        paginator=Paginator(rest.get, executor=executor),
    )

    status = await backup.run(tmp_path, 30)

    assert status.modules["customers"] == "failed"
    assert status.errors == [
        "Customers backup failed: Failed to parse JSON at line 1: invalid start byte"
    ]
    for module in ("products", "orders", "collections", "pages", "blogs", "shop_metafields"):
        assert status.modules[module] == "success"
    assert load(backup, "status")["modules"]["customers"] == "failed"
