"""Dated backup snapshots on disk: ``<backup_dir>/<YYYY-MM-DD>/<name>.json``."""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from tempfile import NamedTemporaryFile
import json
import logging
import re
import shutil

from .jsonl import Json

__all__ = ("Store", "Cleanup", "prune_snapshots")

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(slots=True)
class Store:
    store_dir: Path

    def __post_init__(self):
        # backups hold customer data, keep them private
        self.store_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    @classmethod
    def snapshot(cls, backup_dir: Path, day: date | None = None) -> "Store":
        return cls(backup_dir / (day or date.today()).isoformat())

    def _target(self, path: str | Path) -> Path:
        file = self.store_dir / path
        file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        return file

    def save(self, path: str | Path, data: Json) -> Path:
        file = self._target(Path(path).with_suffix(".json"))

        with NamedTemporaryFile(
            "w",
            encoding="utf-8",
            prefix=f"{file.name}-",
            dir=file.parent,
        ) as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            Path(f.name).rename(file)

        return file

    def save_bytes(self, path: str | Path, data: bytes) -> Path:
        file = self._target(path)

        with NamedTemporaryFile("wb", prefix=f"{file.name}-", dir=file.parent) as f:
            f.write(data)
            f.flush()
            Path(f.name).rename(file)

        return file

    def exists(self, path: str | Path) -> bool:
        return (self.store_dir / path).exists()


@dataclass(slots=True)
class Cleanup:
    deleted: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def prune_snapshots(
    backup_dir: Path, retention_days: int, today: date | None = None
) -> Cleanup:
    result = Cleanup()
    today = today or date.today()

    if not backup_dir.is_dir():
        return result

    for entry in sorted(backup_dir.iterdir()):
        if not entry.is_dir() or not SNAPSHOT_NAME.match(entry.name):
            continue

        try:
            day = date.fromisoformat(entry.name)
        except ValueError:
            continue  # 2024-13-45 and friends

        if (today - day).days <= retention_days:
            result.kept.append(entry.name)
            continue

        try:
            shutil.rmtree(entry)
            result.deleted.append(entry.name)
            logger.info("Deleted old backup %s", entry.name)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", entry.name, e)
            result.errors.append(f"Failed to delete {entry.name}: {e}")

    return result
