"""Direct media upload: submit bytes, then poll until the file is ACTIVE.

States: PENDING -> UPLOADING -> POLLING -> ACTIVE | FAILED, or
POLLING -> TIMEOUT once the poll budget is spent. A FileHandle is only
returned after the status endpoint has reported ACTIVE.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

import httpx

from castor.classify import wrap_transport_error
from castor.errors import (
    InternalError,
    UploadError,
    UploadProcessingError,
    UploadTimeoutError,
)
from castor.transports._http import OwnedClient
from castor.types import UploadRecord, UploadState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.config import Config
    from castor.types import FileHandle, RawBytesForUpload

logger = logging.getLogger(__name__)

_STATUS_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class UploadDiagnostics:
    """Readiness report for direct uploads."""

    is_ready: bool
    issues: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


def _file_payload(body: Any) -> dict[str, Any]:
    """Upload and status responses may wrap the file in ``{"file": ...}``."""
    if isinstance(body, dict):
        inner = body.get("file")
        if isinstance(inner, dict):
            return inner
        return body
    return {}


class FileUploader:
    """Uploads local media to the provider's File API."""

    def __init__(
        self,
        config: Config,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._http = OwnedClient(http_client)
        self._sleep = sleep

    def _auth_headers(self) -> dict[str, str]:
        identity = self.config.app_identity
        return identity.headers() if identity is not None else {}

    def _upload_url(self) -> str:
        base = self.config.api_base.rstrip("/")
        return f"{base}/upload/{self.config.api_version}/files"

    def _file_url(self, name: str) -> str:
        base = self.config.api_base.rstrip("/")
        return f"{base}/{self.config.api_version}/{name}"

    def _params(self) -> dict[str, str]:
        return {"key": self.config.api_key or ""}

    async def upload(self, media: RawBytesForUpload) -> FileHandle:
        """Upload *media* and wait for it to become ACTIVE."""
        record = UploadRecord(mime_type=media.mime_type)
        await self._submit(media, record)
        await self._wait_until_active(record)
        return record.to_handle()

    async def _read_bytes(self, media: RawBytesForUpload) -> bytes:
        if media.path is not None:
            if not media.path.is_file():
                raise UploadError(
                    f"Upload source not found: {media.path}",
                    hint="Check the file still exists before uploading.",
                    phase="upload",
                )
            return await asyncio.to_thread(media.path.read_bytes)
        if media.data is not None:
            return media.data
        raise UploadError("Upload has neither a path nor bytes", phase="upload")

    async def _submit(self, media: RawBytesForUpload, record: UploadRecord) -> None:
        if not self.config.api_key:
            raise UploadError(
                "Direct upload requires an API key",
                hint="Set GEMINI_UPLOAD_KEY or GEMINI_API_KEY.",
                phase="upload",
            )
        data = await self._read_bytes(media)
        headers = {
            **self._auth_headers(),
            "X-Goog-Upload-Protocol": "raw",
            "X-Goog-Upload-File-Name": media.display_name,
            "Content-Type": media.mime_type or "application/octet-stream",
        }

        record.state = UploadState.UPLOADING
        logger.info(
            "Uploading %s (%s, %.2fMB)",
            media.display_name,
            media.mime_type,
            len(data) / (1024 * 1024),
        )
        try:
            response = await self._http.client.post(
                self._upload_url(),
                params=self._params(),
                content=data,
                headers=headers,
                timeout=self.config.upload_timeout_s,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record.state = UploadState.FAILED
            cause = wrap_transport_error(e, phase="upload")
            raise UploadError(
                f"Gemini upload failed: {cause}",
                status_code=cause.status_code,
                phase="upload",
            ) from e

        if not response.is_success:
            record.state = UploadState.FAILED
            raise UploadError(
                f"Gemini upload error ({response.status_code}): "
                f"{response.text or 'Unknown error'}",
                status_code=response.status_code,
                phase="upload",
            )

        try:
            file_obj = _file_payload(response.json())
        except ValueError:
            file_obj = {}
        name = file_obj.get("name")
        if not isinstance(name, str) or not name:
            record.state = UploadState.FAILED
            raise UploadError(
                "Gemini upload did not return a file name", phase="upload"
            )

        record.name = name
        record.state = UploadState.POLLING
        logger.debug("Upload accepted as %s; waiting for ACTIVE", name)

    async def _wait_until_active(self, record: UploadRecord) -> None:
        """Poll the status endpoint until ACTIVE, FAILED, or out of attempts."""
        if record.name is None:
            raise InternalError("Polling started before the upload returned a name")
        max_attempts = self.config.file_poll_max_attempts

        for attempt in range(max_attempts):
            file_obj = await self._fetch_status(record.name)
            record.polls += 1
            state = file_obj.get("state")
            record.last_remote_state = (
                state if isinstance(state, str) and state else "STATE_UNSPECIFIED"
            )

            if record.last_remote_state == "ACTIVE":
                uri = file_obj.get("uri")
                if not (isinstance(uri, str) and uri):
                    uri = self._file_url(record.name)
                record.uri = uri
                mime = file_obj.get("mimeType")
                if isinstance(mime, str) and mime:
                    record.mime_type = mime
                record.state = UploadState.ACTIVE
                logger.info(
                    "File %s is ACTIVE after %d poll(s)", record.name, record.polls
                )
                return

            if record.last_remote_state == "FAILED":
                record.state = UploadState.FAILED
                error = file_obj.get("error")
                detail = error.get("message") if isinstance(error, dict) else None
                raise UploadProcessingError(
                    f"Gemini file processing failed: {detail or 'Unknown error'}",
                    phase="upload",
                )

            if attempt + 1 < max_attempts:
                await self._sleep(self.config.file_poll_interval_s)

        record.state = UploadState.TIMEOUT
        raise UploadTimeoutError(
            f"Timed out waiting for file to become ACTIVE "
            f"(last state: {record.last_remote_state})",
            hint="Large videos can take longer; retry later or use a shorter clip.",
            phase="upload",
        )

    async def _fetch_status(self, name: str) -> dict[str, Any]:
        try:
            response = await self._http.client.get(
                self._file_url(name),
                params=self._params(),
                headers=self._auth_headers(),
                timeout=_STATUS_TIMEOUT_S,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            cause = wrap_transport_error(e, phase="upload")
            raise UploadError(
                f"Gemini file status request failed: {cause}",
                phase="upload",
            ) from e

        if not response.is_success:
            raise UploadError(
                f"Gemini file status error ({response.status_code}): {response.text}",
                status_code=response.status_code,
                phase="upload",
            )
        try:
            return _file_payload(response.json())
        except ValueError as e:
            raise UploadError(
                "Gemini file status response is not JSON", phase="upload"
            ) from e

    def diagnose(self) -> UploadDiagnostics:
        """Report whether direct uploads can work with this configuration."""
        issues: list[str] = []
        identity = self.config.app_identity
        details: dict[str, Any] = {
            "direct_upload_available": self.config.direct_available,
            "api_key_length": len(self.config.api_key or ""),
            "proxy_configured": self.config.proxy_available,
            "identity_headers": sorted(identity.headers()) if identity else [],
        }
        if not self.config.direct_available:
            issues.append(
                "No Gemini API key available; large media will go through the proxy "
                "or fail. Set GEMINI_UPLOAD_KEY or GEMINI_API_KEY."
            )
        if identity is not None and (
            bool(identity.android_package) != bool(identity.android_cert)
        ):
            issues.append(
                "Android identity headers are incomplete; set both "
                "GEMINI_UPLOAD_ANDROID_PACKAGE and GEMINI_UPLOAD_ANDROID_CERT."
            )
        diagnostics = UploadDiagnostics(
            is_ready=self.config.direct_available and not issues,
            issues=tuple(issues),
            details=details,
        )
        logger.debug("Upload diagnostics: %s", diagnostics)
        return diagnostics

    async def aclose(self) -> None:
        await self._http.aclose()
