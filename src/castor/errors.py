"""Exception hierarchy for Castor.

Every upstream failure is tagged once, at the transport boundary, with an
``ErrorKind``. Retry decisions read the tag; they never re-inspect messages.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class ErrorKind(str, Enum):
    """Machine-readable classification carried by every APIError."""

    QUOTA = "quota"
    ACCESS_DENIED = "access_denied"
    NETWORK_TRANSIENT = "network_transient"
    SERVER_TRANSIENT = "server_transient"
    CLIENT_FATAL = "client_fatal"
    UPLOAD_FAILED = "upload_failed"
    UPLOAD_TIMEOUT = "upload_timeout"
    UPLOAD_PROCESSING_FAILED = "upload_processing_failed"
    NO_TRANSPORT_AVAILABLE = "no_transport_available"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def is_transient(self) -> bool:
        """Whether the same model may succeed on a later attempt."""
        return self in (ErrorKind.NETWORK_TRANSIENT, ErrorKind.SERVER_TRANSIENT)

    @property
    def triggers_failover(self) -> bool:
        """Whether the current model should be abandoned without retrying."""
        return self in (ErrorKind.QUOTA, ErrorKind.ACCESS_DENIED)


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class InternalError(CastorError):
    """A Castor internal error (bug) or invariant violation."""


class APIError(CastorError):
    """A generation or upload call failed.

    ``kind`` is the stable contract for callers and for the retry
    controller. ``retry_after_s`` carries either the provider's requested
    delay or, for a tripped cooldown, the remaining wait.
    """

    default_kind: ErrorKind = ErrorKind.CLIENT_FATAL

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        model: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind if kind is not None else self.default_kind
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.model = model
        self.phase = phase

    @property
    def retryable(self) -> bool:
        """True when the retry controller may retry the same model."""
        return self.kind.is_transient


class QuotaError(APIError):
    """Quota exhausted, rate limited, or blocked by an active cooldown."""

    default_kind = ErrorKind.QUOTA


class AccessDeniedError(APIError):
    """Credential rejected or model unavailable to this caller."""

    default_kind = ErrorKind.ACCESS_DENIED


class NetworkError(APIError):
    """Transport-level failure: timeout, abort, connection reset."""

    default_kind = ErrorKind.NETWORK_TRANSIENT


class ServerError(APIError):
    """Upstream 5xx."""

    default_kind = ErrorKind.SERVER_TRANSIENT


class ClientError(APIError):
    """Request-shape problem that no retry can fix."""

    default_kind = ErrorKind.CLIENT_FATAL


class UploadError(APIError):
    """Media upload to the provider failed."""

    default_kind = ErrorKind.UPLOAD_FAILED


class UploadTimeoutError(UploadError):
    """Uploaded file never reached ACTIVE within the poll budget."""

    default_kind = ErrorKind.UPLOAD_TIMEOUT


class UploadProcessingError(UploadError):
    """Provider reported FAILED while processing an uploaded file."""

    default_kind = ErrorKind.UPLOAD_PROCESSING_FAILED


class NoTransportAvailableError(APIError):
    """No way to deliver the media payload with the current configuration."""

    default_kind = ErrorKind.NO_TRANSPORT_AVAILABLE


class MalformedResponseError(APIError):
    """The call succeeded but its text is not the expected structured format."""

    default_kind = ErrorKind.MALFORMED_RESPONSE


_KIND_TO_CLASS: dict[ErrorKind, type[APIError]] = {
    ErrorKind.QUOTA: QuotaError,
    ErrorKind.ACCESS_DENIED: AccessDeniedError,
    ErrorKind.NETWORK_TRANSIENT: NetworkError,
    ErrorKind.SERVER_TRANSIENT: ServerError,
    ErrorKind.CLIENT_FATAL: ClientError,
    ErrorKind.UPLOAD_FAILED: UploadError,
    ErrorKind.UPLOAD_TIMEOUT: UploadTimeoutError,
    ErrorKind.UPLOAD_PROCESSING_FAILED: UploadProcessingError,
    ErrorKind.NO_TRANSPORT_AVAILABLE: NoTransportAvailableError,
    ErrorKind.MALFORMED_RESPONSE: MalformedResponseError,
}


def error_class_for(kind: ErrorKind) -> type[APIError]:
    """Return the APIError subclass that represents *kind*."""
    return _KIND_TO_CLASS[kind]


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
