"""Transport selection for media-bearing requests.

Each request is resolved to exactly one delivery path: inline bytes, a file
reference from a direct upload, or a base64 payload the proxy uploads.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import ClientError, NoTransportAvailableError
from castor.transports.base import ProxyUpload
from castor.types import (
    FileHandle,
    InlineBytes,
    MediaPath,
    RawBytesForUpload,
)

if TYPE_CHECKING:
    from castor.config import Config
    from castor.types import MediaReference
    from castor.uploads import FileUploader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedMedia:
    """Contents ready to send plus the transport decision."""

    contents: Any
    media_path: MediaPath = MediaPath.NONE
    upload: ProxyUpload | None = None
    use_direct: bool = False
    handle: FileHandle | None = None

    @property
    def is_media_bearing(self) -> bool:
        """Non-inline media gets the longer per-attempt timeout."""
        return self.media_path not in (MediaPath.NONE, MediaPath.INLINE)


def inject_part(contents: Any, part: dict[str, Any]) -> Any:
    """Prepend a media part to the first user turn of *contents*."""
    if isinstance(contents, str):
        return {"parts": [part, {"text": contents}]}
    if isinstance(contents, list):
        if not contents:
            return [{"role": "user", "parts": [part]}]
        first, *rest = contents
        if isinstance(first, dict):
            parts = first.get("parts")
            merged = [part, *parts] if isinstance(parts, list) else [part]
            return [{**first, "parts": merged}, *rest]
        return [{"role": "user", "parts": [part]}, *contents]
    if isinstance(contents, dict) and isinstance(contents.get("parts"), list):
        return {**contents, "parts": [part, *contents["parts"]]}
    raise ClientError(
        "Invalid contents format for media request",
        hint="Pass a string, {'parts': [...]}, or a list of turns.",
        phase="media",
    )


class MediaResolver:
    """Chooses inline, direct upload, or proxy upload for one request."""

    def __init__(self, config: Config, uploader: FileUploader) -> None:
        self.config = config
        self.uploader = uploader

    async def resolve(
        self,
        contents: Any,
        media: MediaReference | None,
        *,
        prefer_direct: bool = False,
    ) -> ResolvedMedia:
        use_direct = prefer_direct and self.config.direct_available
        if media is None:
            return ResolvedMedia(contents=contents, use_direct=use_direct)

        if isinstance(media, FileHandle):
            return ResolvedMedia(
                contents=inject_part(contents, media.to_part()),
                media_path=MediaPath.FILE_REFERENCE,
                use_direct=self.config.direct_available,
                handle=media,
            )

        if isinstance(media, InlineBytes):
            # Video and oversized payloads are rerouted to an upload.
            media = RawBytesForUpload(mime_type=media.mime_type, data=media.data)

        return await self._resolve_raw(contents, media, use_direct=use_direct)

    async def _resolve_raw(
        self, contents: Any, media: RawBytesForUpload, *, use_direct: bool
    ) -> ResolvedMedia:
        if media.can_inline and media.data is not None:
            logger.debug("Using inline path (%s)", media.mime_type)
            inline = InlineBytes(data=media.data, mime_type=media.mime_type)
            return ResolvedMedia(
                contents=inject_part(contents, inline.to_part()),
                media_path=MediaPath.INLINE,
                use_direct=use_direct,
            )

        if self.config.direct_available and media.path is not None:
            logger.info("Using direct upload path (%s)", media.mime_type)
            try:
                handle = await self.uploader.upload(media)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if media.data is None or not self.config.proxy_available:
                    logger.error("Direct upload failed with no fallback: %s", exc)
                    raise
                logger.warning(
                    "Direct upload failed, falling back to proxy upload: %s", exc
                )
                return ResolvedMedia(
                    contents=contents,
                    media_path=MediaPath.PROXY_UPLOAD_AFTER_DIRECT_FAILURE,
                    upload=self._proxy_upload(media),
                )
            return ResolvedMedia(
                contents=inject_part(contents, handle.to_part()),
                media_path=MediaPath.DIRECT_UPLOAD,
                use_direct=True,
                handle=handle,
            )

        if media.data is not None and self.config.proxy_available:
            logger.info("Using proxy upload path (%s)", media.mime_type)
            return ResolvedMedia(
                contents=contents,
                media_path=MediaPath.PROXY_UPLOAD,
                upload=self._proxy_upload(media),
            )

        logger.error(
            "No valid upload path: has_data=%s has_path=%s direct=%s proxy=%s",
            media.data is not None,
            media.path is not None,
            self.config.direct_available,
            self.config.proxy_available,
        )
        raise NoTransportAvailableError(
            "No transport available for this media payload",
            hint=(
                "Provide the bytes (for proxy upload) or a local path with "
                "GEMINI_API_KEY set (for direct upload)."
            ),
            phase="media",
        )

    @staticmethod
    def _proxy_upload(media: RawBytesForUpload) -> ProxyUpload:
        if media.data is None:
            raise NoTransportAvailableError("Proxy upload needs bytes in memory", phase="media")
        return ProxyUpload(
            data=media.data, mime_type=media.mime_type, file_name=media.file_name
        )
