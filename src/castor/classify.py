"""Map opaque upstream failures into tagged APIError instances.

This is the only place that inspects error messages. Everything downstream
reads ``APIError.kind``.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any

import httpx

from castor.errors import APIError, ErrorKind, _walk_exception_chain, error_class_for

if TYPE_CHECKING:
    from collections.abc import Iterable

_STATUS_RE = re.compile(r"\b([45]\d{2})\b")
_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")
_RETRY_IN_RE = re.compile(r"retry in\s+(\d+(?:\.\d+)?)s", re.IGNORECASE)
# "rate" as a word only; a bare substring would match "generate".
_RATE_RE = re.compile(r"\brate\b|rate.?limit")

_QUOTA_TERMS = ("quota", "resource_exhausted")
_ACCESS_TERMS = ("unauthorized", "forbidden", "permission")
_NETWORK_TERMS = ("network", "timeout", "connection", "fetch failed", "aborted")


def status_from_message(message: str) -> int | None:
    """Recover an HTTP status from free text."""
    if not message:
        return None
    m = _STATUS_RE.search(message)
    if m:
        return int(m.group(1))
    lowered = message.lower()
    if "unavailable" in lowered or "overloaded" in lowered:
        return 503
    return None


def classify_failure(
    message: str,
    status_code: int | None = None,
    *,
    aborted: bool = False,
) -> ErrorKind:
    """Classify a failure from its message and optional status.

    Rules apply in priority order: quota, access, network, server, fatal.
    """
    lowered = (message or "").lower()
    status = status_code if status_code is not None else status_from_message(message)

    if (
        status == 429
        or any(term in lowered for term in _QUOTA_TERMS)
        or _RATE_RE.search(lowered)
    ):
        return ErrorKind.QUOTA
    if (
        status in (401, 403, 404)
        or any(term in lowered for term in _ACCESS_TERMS)
        or ("model" in lowered and "not found" in lowered)
    ):
        return ErrorKind.ACCESS_DENIED
    if aborted or any(term in lowered for term in _NETWORK_TERMS):
        return ErrorKind.NETWORK_TRANSIENT
    if isinstance(status, int) and 500 <= status < 600:
        return ErrorKind.SERVER_TRANSIENT
    return ErrorKind.CLIENT_FATAL


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return status_from_message(str(exc))


def is_abort(exc: BaseException) -> bool:
    """True for timeouts and transport-level failures anywhere in the chain."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
            return True
    return False


def classify_exception(exc: BaseException) -> ErrorKind:
    """Classify an arbitrary exception. Tagged APIErrors keep their kind."""
    if isinstance(exc, APIError):
        return exc.kind
    return classify_failure(
        _describe(exc), extract_status_code(exc), aborted=is_abort(exc)
    )


def _parse_proto_duration(value: Any) -> float | None:
    if not isinstance(value, str):
        return None
    m = _PROTO_DURATION_RE.match(value.strip())
    if not m:
        return None
    seconds = float(m.group(1))
    return seconds if seconds > 0 else None


def _detail_entries(details: Any) -> Iterable[Any]:
    """Accept either ``{"error": {"details": [...]}}`` or a bare list."""
    if isinstance(details, dict):
        error = details.get("error")
        if isinstance(error, dict):
            details = error.get("details")
        else:
            details = details.get("details")
    if isinstance(details, list):
        return details
    return ()


def retry_after_from_details(details: Any) -> float | None:
    """Extract a Google RPC ``RetryInfo.retryDelay`` in seconds.

    ``retryDelay`` is a protobuf Duration string such as ``"8s"`` or
    ``"8.352104981s"``.
    """
    for entry in _detail_entries(details):
        if not isinstance(entry, dict):
            continue
        seconds = _parse_proto_duration(entry.get("retryDelay"))
        if seconds is not None:
            return seconds
    return None


def retry_after_from_message(message: str) -> float | None:
    """Extract the ``retry in Ns`` hint Gemini puts in quota messages."""
    m = _RETRY_IN_RE.search(message or "")
    if not m:
        return None
    seconds = float(m.group(1))
    return seconds if seconds > 0 else None


def _retry_after_header(headers: Any) -> float | None:
    if headers is None:
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Best-effort retry delay for an exception, in seconds."""
    for e in _walk_exception_chain(exc):
        if isinstance(e, APIError) and e.retry_after_s is not None:
            return e.retry_after_s
        seconds = retry_after_from_details(getattr(e, "details", None))
        if seconds is not None:
            return seconds
        response = getattr(e, "response", None)
        seconds = _retry_after_header(getattr(response, "headers", None))
        if seconds is not None:
            return seconds
    return retry_after_from_message(str(exc))


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__


def _auth_hint(kind: ErrorKind, status_code: int | None) -> str | None:
    if kind is ErrorKind.ACCESS_DENIED and status_code in (401, 403):
        return "Check credentials (GEMINI_API_KEY / GEMINI_UPLOAD_KEY) or the proxy configuration."
    if kind is ErrorKind.QUOTA:
        return "Wait for the cooldown to expire or configure additional fallback models."
    return None


def build_error(
    message: str,
    *,
    status_code: int | None,
    retry_after_s: float | None,
    aborted: bool = False,
    model: str | None = None,
    phase: str,
    prefix: str | None = None,
) -> APIError:
    """Classify and construct the tagged error for one failure."""
    kind = classify_failure(message, status_code, aborted=aborted)
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    head = f"{prefix}{status_note}" if prefix else ""
    full = f"{head}: {message}" if head else message
    return error_class_for(kind)(
        full,
        hint=_auth_hint(kind, status_code),
        kind=kind,
        status_code=status_code,
        retry_after_s=retry_after_s,
        model=model,
        phase=phase,
    )


def _error_message_from_body(body: Any, fallback: str) -> str:
    """Pick the human-readable message from a JSON error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            status = error.get("status")
            if isinstance(message, str) and message:
                return f"{status}: {message}" if isinstance(status, str) else message
        if isinstance(error, str) and error:
            return error
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
    return fallback


def error_from_response(
    response: httpx.Response,
    *,
    phase: str,
    model: str | None = None,
    prefix: str | None = None,
) -> APIError:
    """Turn a non-2xx HTTP response into a tagged APIError.

    The body is either JSON (``{"error": {...}}``, ``{"error": "..."}``,
    ``{"message": "..."}``) or plain text.
    """
    text = response.text
    body: Any = None
    if text:
        try:
            body = json.loads(text)
        except ValueError:
            body = None

    message = _error_message_from_body(body, text or response.reason_phrase)
    retry_after_s = (
        retry_after_from_details(body)
        or _retry_after_header(response.headers)
        or retry_after_from_message(message)
    )
    return build_error(
        message,
        status_code=response.status_code,
        retry_after_s=retry_after_s,
        model=model,
        phase=phase,
        prefix=prefix,
    )


def wrap_transport_error(
    exc: BaseException,
    *,
    phase: str,
    model: str | None = None,
    prefix: str | None = None,
) -> APIError:
    """Map an exception raised around a transport call into a tagged APIError."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already tagged: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.model is None:
            exc.model = model
        if exc.phase is None:
            exc.phase = phase
        return exc

    return build_error(
        _describe(exc),
        status_code=extract_status_code(exc),
        retry_after_s=extract_retry_after_s(exc),
        aborted=is_abort(exc),
        model=model,
        phase=phase,
        prefix=prefix,
    )
