"""Exceptions raised by the export pipeline."""

from enum import StrEnum
from http import HTTPStatus
from typing import NamedTuple

__all__ = (
    "ShopifyBackupError",
    "ConfigError",
    "Failure",
    "HTTPStatusError",
    "DownloadError",
    "TransportError",
    "ProtocolError",
    "FieldError",
    "ValidationError",
    "SubmissionError",
    "JobFailure",
    "PollingTimeout",
    "PollingAborted",
    "ParseError",
)


class ShopifyBackupError(RuntimeError):
    pass


class ConfigError(ShopifyBackupError):
    pass


class Failure(StrEnum):
    STATUS = "status"
    NETWORK = "network"
    THROTTLED = "throttled"
    FATAL = "fatal"


def reason_phrase(status: int, reason: str | None = None) -> str:
    if reason:
        return reason
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


class HTTPStatusError(ShopifyBackupError):
    status: int
    reason: str
    url: str | None
    retry_after: float | None

    def __init__(
        self,
        status: int,
        reason: str | None = None,
        url: str | None = None,
        retry_after: float | None = None,
    ):
        self.status = status
        self.reason = reason_phrase(status, reason)
        self.url = url
        self.retry_after = retry_after
        super().__init__(self._message())

    def _message(self) -> str:
        suffix = f" for {self.url}" if self.url else ""
        return f"HTTP {self.status} {self.reason}{suffix}"


class DownloadError(HTTPStatusError):
    def _message(self) -> str:
        source = f" {self.url}" if self.url else ""
        return f"Failed to download{source}: {self.status} {self.reason}"


class TransportError(ShopifyBackupError):
    """A retryable failure that outlasted its retry ceiling."""

    failure: Failure
    attempts: int
    last_error: BaseException

    def __init__(self, failure: Failure, attempts: int, last_error: BaseException):
        self.failure = failure
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed after {attempts} attempt(s) ({failure}): {last_error}"
        )


class ProtocolError(ShopifyBackupError):
    messages: list[str]

    def __init__(self, messages: list[str]):
        self.messages = messages
        super().__init__(f"GraphQL errors: {'; '.join(messages)}")


class FieldError(NamedTuple):
    field: tuple[str, ...] | None
    message: str

    @property
    def path(self) -> str:
        return ".".join(self.field) if self.field else "general"


class ValidationError(ShopifyBackupError):
    errors: list[FieldError]

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        super().__init__(
            "User errors: " + "; ".join(f"[{e.path}] {e.message}" for e in errors)
        )


class SubmissionError(ShopifyBackupError):
    pass


class JobFailure(ShopifyBackupError):
    status: str
    error_code: str | None

    def __init__(self, status: str, error_code: str | None, message: str | None = None):
        self.status = status
        self.error_code = error_code
        code = f" ({error_code})" if error_code else ""
        super().__init__(
            f"Bulk operation {status}{code}: {message}"
            if message
            else f"Bulk operation {status}{code}"
        )


class PollingTimeout(ShopifyBackupError):
    timeout: float

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Polling timeout after {timeout:g}s")


class PollingAborted(ShopifyBackupError):
    def __init__(self):
        super().__init__("Polling aborted")


class ParseError(ShopifyBackupError):
    line: int
    reason: str

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f"Failed to parse JSON at line {line}: {reason}")
