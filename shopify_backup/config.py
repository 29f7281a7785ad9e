"""Settings from the environment, optionally overridden on the command line.

SHOPIFY_STORE         shop domain, e.g. example.myshopify.com (required)
SHOPIFY_ACCESS_TOKEN  Admin API access token (required)
BACKUP_DIR            where dated snapshots go
RETENTION_DAYS        days of snapshots to keep (default 30)
"""

from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
import os

from platformdirs import user_data_dir

from .errors import ConfigError

__all__ = ("DEFAULT_RETENTION_DAYS", "Config", "default_backup_dir")

DEFAULT_RETENTION_DAYS = 30


def default_backup_dir() -> Path:
    return Path(user_data_dir("shopify-backup"))


@dataclass(slots=True)
class Config:
    store: str
    access_token: str = field(repr=False)
    backup_dir: Path = field(default_factory=default_backup_dir)
    retention_days: int = DEFAULT_RETENTION_DAYS

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        store: str | None = None,
        backup_dir: str | Path | None = None,
        retention_days: int | None = None,
    ) -> "Config":
        environ = os.environ if environ is None else environ

        store = store or environ.get("SHOPIFY_STORE")
        if not store:
            raise ConfigError(
                "Required environment variable SHOPIFY_STORE is missing or empty"
            )

        access_token = environ.get("SHOPIFY_ACCESS_TOKEN")
        if not access_token:
            raise ConfigError(
                "Required environment variable SHOPIFY_ACCESS_TOKEN is missing or empty"
            )

        if retention_days is None:
            retention_days = DEFAULT_RETENTION_DAYS
            with suppress(KeyError, ValueError):
                retention_days = int(environ["RETENTION_DAYS"])

        if backup_dir is None:
            backup_dir = environ.get("BACKUP_DIR") or default_backup_dir()

        return cls(
            store=store,
            access_token=access_token,
            backup_dir=Path(backup_dir),
            retention_days=retention_days,
        )
