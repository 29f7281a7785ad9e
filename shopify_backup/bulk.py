"""Bulk operation lifecycle: submit a query, poll it to completion, download.

Shopify allows a single bulk operation per app at a time, and the only way
to watch it is ``currentBulkOperation``, which cannot be filtered by id.
"""

from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, cast
import asyncio
import logging
import time

from .errors import (
    FieldError,
    JobFailure,
    ParseError,
    PollingAborted,
    PollingTimeout,
    ProtocolError,
    ShopifyBackupError,
    SubmissionError,
    ValidationError,
)
from .jsonl import Json, JsonD, Schema, parse_jsonl, reconstruct
from .retry import Clock, Executor, Sleep

__all__ = (
    "JobStatus",
    "JobErrorCode",
    "Job",
    "BulkTransport",
    "BulkExporter",
    "RUN_QUERY_MUTATION",
    "CURRENT_BULK_OPERATION_QUERY",
)

logger = logging.getLogger(__name__)


class JobStatus(StrEnum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    CANCELING = "CANCELING"
    EXPIRED = "EXPIRED"


class JobErrorCode(StrEnum):
    ACCESS_DENIED = "ACCESS_DENIED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    TIMEOUT = "TIMEOUT"


IN_PROGRESS = frozenset({JobStatus.CREATED, JobStatus.RUNNING, JobStatus.CANCELING})
FAILURES = frozenset({JobStatus.FAILED, JobStatus.CANCELED, JobStatus.EXPIRED})

JOB_FIELDS = """
      id
      status
      errorCode
      objectCount
      url
      createdAt
      completedAt
      fileSize
      query
      rootObjectCount
"""

RUN_QUERY_MUTATION = f"""
mutation BulkOperationRunQuery($query: String!) {{
  bulkOperationRunQuery(query: $query) {{
    bulkOperation {{{JOB_FIELDS}    }}
    userErrors {{
      field
      message
    }}
  }}
}}
"""

CURRENT_BULK_OPERATION_QUERY = f"""
query {{
  currentBulkOperation {{{JOB_FIELDS}  }}
}}
"""


def _int(value: Json) -> int | None:
    with suppress(TypeError, ValueError):
        return int(value)  # pyright: ignore[reportArgumentType]
    return None


@dataclass(frozen=True, slots=True)
class Job:
    id: str
    status: str
    error_code: str | None = None
    object_count: int = 0
    url: str | None = None
    created_at: str | None = None
    completed_at: str | None = None
    query: str | None = None
    file_size: int | None = None
    root_object_count: int | None = None

    @classmethod
    def from_json(cls, data: JsonD) -> "Job":
        # UnsignedInt64 fields (objectCount etc.) come over the wire as strings
        return cls(
            id=cast(str, data["id"]),
            status=cast(str, data["status"]),
            error_code=cast(str | None, data.get("errorCode")),
            object_count=_int(data.get("objectCount")) or 0,
            url=cast(str | None, data.get("url")),
            created_at=cast(str | None, data.get("createdAt")),
            completed_at=cast(str | None, data.get("completedAt")),
            query=cast(str | None, data.get("query")),
            file_size=_int(data.get("fileSize")),
            root_object_count=_int(data.get("rootObjectCount")),
        )


class BulkTransport(Protocol):
    async def graphql(self, query: str, variables: JsonD | None = None) -> JsonD: ...

    async def download(self, url: str) -> bytes: ...


@dataclass(slots=True)
class BulkExporter:
    client: BulkTransport
    executor: Executor = field(default_factory=Executor)
    poll_interval: float = 1.0
    timeout: float = 600.0
    clock: Clock = time.monotonic
    sleep: Sleep = asyncio.sleep
    _active: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def _request(self, query: str, variables: JsonD | None = None) -> JsonD:
        response = await self.client.graphql(query, variables)

        if errors := cast(list[JsonD], response.get("errors") or []):
            raise ProtocolError([cast(str, e.get("message", str(e))) for e in errors])

        return cast(JsonD, response.get("data") or {})

    async def submit(self, query: str) -> str:
        data = await self.executor.execute(
            lambda: self._request(RUN_QUERY_MUTATION, {"query": query})
        )

        result = cast(JsonD | None, data.get("bulkOperationRunQuery"))
        if not result:
            raise SubmissionError(
                "Bulk operation submission failed: invalid response structure"
            )

        if user_errors := cast(list[JsonD], result.get("userErrors") or []):
            raise ValidationError(
                [
                    FieldError(
                        tuple(cast(list[str], e["field"])) if e.get("field") else None,
                        cast(str, e.get("message", "")),
                    )
                    for e in user_errors
                ]
            )

        if not (operation := cast(JsonD | None, result.get("bulkOperation"))):
            raise SubmissionError("Bulk operation submission failed: no operation returned")

        job_id = cast(str, operation["id"])
        logger.info("Submitted bulk operation %s", job_id)
        return job_id

    async def _nap(self, delay: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await self.sleep(delay)
            return

        if cancel.is_set():
            return

        sleeper = asyncio.ensure_future(self.sleep(delay))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait((sleeper, waiter), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
            for task in (sleeper, waiter):
                with suppress(asyncio.CancelledError):
                    await task

    async def poll(
        self,
        job_id: str,
        *,
        poll_interval: float | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Job:
        # job_id can't be used to look the job up (see module docstring), but
        # callers have it and it makes the logs line up
        poll_interval = self.poll_interval if poll_interval is None else poll_interval
        timeout = self.timeout if timeout is None else timeout

        if cancel is not None and cancel.is_set():
            raise PollingAborted()

        logger.debug(
            "Polling bulk operation %s (interval: %gs, timeout: %gs)",
            job_id,
            poll_interval,
            timeout,
        )

        start = self.clock()
        polls = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise PollingAborted()

            if self.clock() - start >= timeout:
                raise PollingTimeout(timeout)

            polls += 1
            data = await self.executor.execute(
                lambda: self._request(CURRENT_BULK_OPERATION_QUERY)
            )

            if not (operation := cast(JsonD | None, data.get("currentBulkOperation"))):
                raise ShopifyBackupError("No bulk operation found")

            job = Job.from_json(operation)
            logger.debug(
                "Poll #%d: status=%s, objectCount=%d", polls, job.status, job.object_count
            )

            if job.id != job_id:
                logger.warning(
                    "Current bulk operation is %s, not %s; was another one started?",
                    job.id,
                    job_id,
                )

            if job.status == JobStatus.COMPLETED:
                logger.info(
                    "Bulk operation %s completed after %d poll(s): %d object(s)",
                    job.id,
                    polls,
                    job.object_count,
                )
                return job
            elif job.status in FAILURES:
                raise JobFailure(job.status, job.error_code)
            elif job.status in IN_PROGRESS:
                await self._nap(poll_interval, cancel)
            else:
                raise JobFailure(job.status, job.error_code, f"Unknown status: {job.status}")

    async def download(self, job: Job) -> bytes | None:
        # no url means nothing matched (objectCount "0"), so nothing to fetch
        if job.url is None:
            return None

        return await self.client.download(job.url)

    async def export(
        self, query: str, schema: Schema, *, cancel: asyncio.Event | None = None
    ) -> list[JsonD]:
        async with self._active:
            # don't start a job nobody will wait for
            if cancel is not None and cancel.is_set():
                raise PollingAborted()

            job_id = await self.submit(query)
            job = await self.poll(job_id, cancel=cancel)
            body = await self.download(job)

        if body is None:
            return []

        try:
            text = body.decode()
        except UnicodeDecodeError as e:
            raise ParseError(body.count(b"\n", 0, e.start) + 1, e.reason) from e

        return reconstruct(parse_jsonl(text), schema)
