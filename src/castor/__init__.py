"""Castor: resilient Gemini generation with fallback, cooldown, and uploads.

Public API:
    - generate(): Free-text generation through the process-wide client stack
    - generate_json(): Same, parsed (and optionally validated) as JSON
    - Orchestrator: Reusable client with injectable collaborators
    - Config / GenerationConfig / RetryPolicy: Configuration
    - InlineBytes / RawBytesForUpload / FileHandle: Media references
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.config import Config
from castor.errors import (
    AccessDeniedError,
    APIError,
    CastorError,
    ClientError,
    ConfigurationError,
    ErrorKind,
    InternalError,
    MalformedResponseError,
    NetworkError,
    NoTransportAvailableError,
    QuotaError,
    ServerError,
    UploadError,
    UploadProcessingError,
    UploadTimeoutError,
)
from castor.orchestrator import Orchestrator
from castor.ratelimit import RateLimiter, default_rate_limiter
from castor.retry import RetryPolicy
from castor.types import (
    FileHandle,
    GenerateResult,
    GenerationConfig,
    InlineBytes,
    MediaPath,
    RawBytesForUpload,
    RequestSpec,
    SafetySetting,
)

if TYPE_CHECKING:
    from castor.types import MediaReference, ResponseSchemaInput

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-genai")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def _close_quietly(client: Orchestrator) -> None:
    try:
        await client.aclose()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        # Cleanup should never mask the primary failure.
        logger.warning("Client cleanup failed: %s", exc)


async def generate(
    contents: Any,
    config: GenerationConfig | None = None,
    *,
    model: str | None = None,
    media: MediaReference | None = None,
    prefer_direct: bool = False,
    retry: RetryPolicy | None = None,
    settings: Config | None = None,
) -> GenerateResult:
    """Generate text with a short-lived client bound to the shared cooldown.

    Args:
        contents: Prompt string, ``{"parts": [...]}``, or a list of turns.
        config: Generation options.
        model: Requested model, tried before the configured defaults.
        media: Optional image, audio, or video reference.
        prefer_direct: Call the provider directly when a key is configured.
        retry: Per-call retry policy override.
        settings: Client configuration; resolved from the environment if omitted.

    Example:
        result = await castor.generate("Suggest a 10 minute stretch routine")
        print(result.text)
    """
    client = Orchestrator(settings, rate_limiter=default_rate_limiter)
    try:
        return await client.generate(
            contents,
            config,
            model=model,
            media=media,
            prefer_direct=prefer_direct,
            retry=retry,
        )
    finally:
        await _close_quietly(client)


async def generate_json(
    contents: Any,
    config: GenerationConfig | None = None,
    *,
    schema: ResponseSchemaInput | None = None,
    model: str | None = None,
    media: MediaReference | None = None,
    prefer_direct: bool = False,
    retry: RetryPolicy | None = None,
    settings: Config | None = None,
) -> Any:
    """Like :func:`generate`, returning parsed JSON (or a validated model)."""
    client = Orchestrator(settings, rate_limiter=default_rate_limiter)
    try:
        return await client.generate_json(
            contents,
            config,
            schema=schema,
            model=model,
            media=media,
            prefer_direct=prefer_direct,
            retry=retry,
        )
    finally:
        await _close_quietly(client)


__all__ = [
    "APIError",
    "AccessDeniedError",
    "CastorError",
    "ClientError",
    "Config",
    "ConfigurationError",
    "ErrorKind",
    "FileHandle",
    "GenerateResult",
    "GenerationConfig",
    "InlineBytes",
    "InternalError",
    "MalformedResponseError",
    "MediaPath",
    "NetworkError",
    "NoTransportAvailableError",
    "Orchestrator",
    "QuotaError",
    "RateLimiter",
    "RawBytesForUpload",
    "RequestSpec",
    "RetryPolicy",
    "SafetySetting",
    "ServerError",
    "UploadError",
    "UploadProcessingError",
    "UploadTimeoutError",
    "generate",
    "generate_json",
]
