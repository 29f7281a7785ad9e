"""Back up a Shopify store to local JSON files using bulk operations."""

# pyright: reportAny=false, reportExplicitAny=false

from argparse import SUPPRESS, ArgumentDefaultsHelpFormatter, ArgumentParser
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import asyncio
import logging
import os
import signal
import sys

from .backup import Backup, BackupStatus
from .bulk import BulkExporter, Job, JobErrorCode, JobStatus
from .client import Client, Page
from .config import DEFAULT_RETENTION_DAYS, Config, default_backup_dir
from .errors import (
    ConfigError,
    DownloadError,
    Failure,
    FieldError,
    HTTPStatusError,
    JobFailure,
    ParseError,
    PollingAborted,
    PollingTimeout,
    ProtocolError,
    ShopifyBackupError,
    SubmissionError,
    TransportError,
    ValidationError,
)
from .jsonl import Gid, Json, JsonD, Schema, parse_gid, parse_jsonl, reconstruct
from .pagination import Paginator
from .retry import SHARED_LIMITER, Executor, RateLimiter, RetryPolicy, classify
from .store import Cleanup, Store, prune_snapshots

__version__ = "0.1.0"

__all__ = (
    "__version__",
    "main",
    "Backup",
    "BackupStatus",
    "BulkExporter",
    "Job",
    "JobStatus",
    "JobErrorCode",
    "Client",
    "Page",
    "Config",
    "Paginator",
    "Executor",
    "RetryPolicy",
    "RateLimiter",
    "SHARED_LIMITER",
    "classify",
    "Store",
    "Cleanup",
    "prune_snapshots",
    "Schema",
    "Gid",
    "parse_gid",
    "parse_jsonl",
    "reconstruct",
    "Json",
    "JsonD",
    "Failure",
    "FieldError",
    "ShopifyBackupError",
    "ConfigError",
    "HTTPStatusError",
    "DownloadError",
    "TransportError",
    "ProtocolError",
    "ValidationError",
    "SubmissionError",
    "JobFailure",
    "PollingTimeout",
    "PollingAborted",
    "ParseError",
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DefaultPath:
    path: str

    def __str__(self):
        try:
            return f"~/{Path(self.path).relative_to(Path.home())}"
        except ValueError:
            return self.path


def _summary(status: BackupStatus) -> str:
    lines = [f"Backup saved to {status.backup_dir}"]
    for module, state in status.modules.items():
        if module == "images":
            lines.append(
                f"  images: {state} ({status.images['downloaded']} downloaded, "
                + f"{status.images['failed']} failed)"
            )
        else:
            lines.append(f"  {module}: {state} ({status.counts.get(module, 0)})")
    if status.cleanup.deleted:
        lines.append(f"  removed old backups: {', '.join(status.cleanup.deleted)}")
    return "\n".join(lines)


async def _main() -> int:
    def default(cls: type[Any], key: str) -> Any:
        return cls.__dataclass_fields__[key].default

    parser = ArgumentParser(
        description="Backup a Shopify store",
        formatter_class=ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "backup_dir",
        nargs="?",
        default=DefaultPath(os.environ.get("BACKUP_DIR") or str(default_backup_dir())),
        help="Directory to save backups, $BACKUP_DIR if set",
    )
    parser.add_argument(
        "-s",
        "--store",
        default=SUPPRESS,
        help="Shop domain, e.g. example.myshopify.com (default: $SHOPIFY_STORE)",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        metavar="DAYS",
        default=SUPPRESS,
        help=f"Days of backups to keep (default: $RETENTION_DAYS or {DEFAULT_RETENTION_DAYS})",
    )
    parser.add_argument(
        "-c",
        "--connections",
        type=int,
        default=default(Client, "connections"),
        help="Maximum concurrent connections",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        metavar="SECONDS",
        default=default(BulkExporter, "poll_interval"),
        help="Delay between bulk operation status checks",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        default=default(BulkExporter, "timeout"),
        help="Give up on a bulk operation after this long",
    )
    parser.add_argument(
        "-r",
        "--retries",
        type=int,
        default=default(RetryPolicy, "max_retries"),
        help="Number of retries for API requests",
    )
    parser.add_argument(
        "--min-interval",
        type=float,
        metavar="SECONDS",
        default=default(RateLimiter, "min_interval"),
        help="Minimum delay between API requests",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        type=str.upper,
        help="Logging verbosity",
    )

    args = parser.parse_args()
    if isinstance(args.backup_dir, DefaultPath):
        args.backup_dir = args.backup_dir.path

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = Config.from_env(
            store=getattr(args, "store", None),
            backup_dir=args.backup_dir,
            retention_days=getattr(args, "retention_days", None),
        )
    except ConfigError as e:
        parser.error(str(e))

    cancel = asyncio.Event()
    with suppress(NotImplementedError):
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, cancel.set)

    executor = Executor(
        policy=RetryPolicy(max_retries=args.retries),
        limiter=RateLimiter(min_interval=args.min_interval),
    )
    store = Store.snapshot(config.backup_dir)
    logger.info("Backing up %s to %s", config.store, store.store_dir)

    async with Client(
        shop=config.store,
        access_token=config.access_token,
        connections=args.connections,
    ) as client:
        backup = Backup(
            client=client,
            store=store,
            exporter=BulkExporter(
                client,
                executor=executor,
                poll_interval=args.poll_interval,
                timeout=args.timeout,
            ),
            paginator=Paginator(client.rest_get, executor=executor),
            cancel=cancel,
        )
        status = await backup.run(config.backup_dir, config.retention_days)

    print(_summary(status))
    for error in status.errors:
        print(error, file=sys.stderr)

    return 1 if status.failed else 0


def main() -> None:
    with suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(_main()))


if __name__ == "__main__":
    main()
