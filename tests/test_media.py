"""Transport selection for media payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from castor.config import AppIdentity, Config
from castor.errors import ClientError, NoTransportAvailableError, UploadError
from castor.media import MediaResolver, inject_part
from castor.types import (
    INLINE_MEDIA_MAX_BYTES,
    FileHandle,
    InlineBytes,
    MediaPath,
    RawBytesForUpload,
)

pytestmark = pytest.mark.unit

API_KEY = "test-key-0123456789"
PROXY = "https://proxy.example/.netlify/functions/gemini-proxy"
MB = 1024 * 1024


@dataclass
class FakeUploader:
    handle: FileHandle = field(
        default_factory=lambda: FileHandle(
            uri="https://files.example/v1beta/files/vid1", mime_type="video/mp4", name="files/vid1"
        )
    )
    error: Exception | None = None
    uploads: list[RawBytesForUpload] = field(default_factory=list)

    async def upload(self, media: RawBytesForUpload) -> FileHandle:
        self.uploads.append(media)
        if self.error is not None:
            raise self.error
        return self.handle


def _config(*, key: bool = True, proxy: bool = True) -> Config:
    return Config(
        api_key=API_KEY if key else None,
        proxy_url=PROXY if proxy else None,
        app_identity=AppIdentity(),
        use_mock=not (key or proxy),
    )


@pytest.fixture
def big_video(tmp_path: Path) -> RawBytesForUpload:
    path = tmp_path / "workout.mp4"
    with path.open("wb") as f:
        f.truncate(20 * MB)
    return RawBytesForUpload.from_file(path, "video/mp4")


@pytest.mark.asyncio
async def test_no_media_passes_contents_through() -> None:
    uploader = FakeUploader()
    resolved = await MediaResolver(_config(), uploader).resolve("hello", None)

    assert resolved.contents == "hello"
    assert resolved.media_path is MediaPath.NONE
    assert resolved.use_direct is False
    assert resolved.is_media_bearing is False


@pytest.mark.asyncio
async def test_prefer_direct_honored_only_with_key() -> None:
    with_key = await MediaResolver(_config(), FakeUploader()).resolve(
        "hi", None, prefer_direct=True
    )
    without_key = await MediaResolver(_config(key=False), FakeUploader()).resolve(
        "hi", None, prefer_direct=True
    )
    assert with_key.use_direct is True
    assert without_key.use_direct is False


@pytest.mark.asyncio
async def test_small_jpeg_goes_inline_without_uploading() -> None:
    uploader = FakeUploader()
    media = RawBytesForUpload(mime_type="image/jpeg", data=b"\xff\xd8" + b"\x00" * (2 * MB))

    resolved = await MediaResolver(_config(), uploader).resolve("Describe this meal", media)

    assert resolved.media_path is MediaPath.INLINE
    assert uploader.uploads == []
    assert resolved.upload is None
    first_part = resolved.contents["parts"][0]
    assert first_part["inlineData"]["mimeType"] == "image/jpeg"
    assert resolved.contents["parts"][1] == {"text": "Describe this meal"}


@pytest.mark.asyncio
async def test_large_video_with_key_uses_direct_upload(big_video: RawBytesForUpload) -> None:
    uploader = FakeUploader()

    resolved = await MediaResolver(_config(), uploader).resolve("Count my reps", big_video)

    assert uploader.uploads == [big_video]
    assert resolved.media_path is MediaPath.DIRECT_UPLOAD
    assert resolved.use_direct is True
    assert resolved.handle == uploader.handle
    assert resolved.contents["parts"][0] == {
        "fileData": {"fileUri": uploader.handle.uri, "mimeType": "video/mp4"}
    }
    assert resolved.is_media_bearing is True


@pytest.mark.asyncio
async def test_small_video_is_never_inlined() -> None:
    media = RawBytesForUpload(mime_type="video/mp4", data=b"\x00" * 1024)

    resolved = await MediaResolver(_config(key=False), FakeUploader()).resolve("x", media)

    assert resolved.media_path is MediaPath.PROXY_UPLOAD
    assert resolved.upload is not None
    assert resolved.upload.mime_type == "video/mp4"
    assert resolved.contents == "x"


@pytest.mark.asyncio
async def test_direct_upload_failure_falls_back_to_proxy_when_bytes_available(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 2048)
    media = RawBytesForUpload(mime_type="video/mp4", data=path.read_bytes(), path=path)
    uploader = FakeUploader(error=UploadError("Gemini upload error (403): denied"))

    with caplog.at_level("WARNING", logger="castor.media"):
        resolved = await MediaResolver(_config(), uploader).resolve("x", media)

    assert resolved.media_path is MediaPath.PROXY_UPLOAD_AFTER_DIRECT_FAILURE
    assert resolved.use_direct is False
    assert resolved.upload is not None
    assert resolved.upload.data == media.data
    assert any("falling back to proxy" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_direct_upload_failure_without_bytes_reraises(
    big_video: RawBytesForUpload,
) -> None:
    uploader = FakeUploader(error=UploadError("boom"))

    with pytest.raises(UploadError, match="boom"):
        await MediaResolver(_config(), uploader).resolve("x", big_video)


@pytest.mark.asyncio
async def test_path_only_media_without_key_has_no_transport(
    big_video: RawBytesForUpload,
) -> None:
    uploader = FakeUploader()

    with pytest.raises(NoTransportAvailableError):
        await MediaResolver(_config(key=False), uploader).resolve("x", big_video)

    assert uploader.uploads == []


@pytest.mark.asyncio
async def test_oversized_inline_bytes_are_rerouted_as_upload() -> None:
    media = InlineBytes(data=b"\x00" * (INLINE_MEDIA_MAX_BYTES + 1), mime_type="image/png")

    resolved = await MediaResolver(_config(key=False), FakeUploader()).resolve("x", media)

    assert resolved.media_path is MediaPath.PROXY_UPLOAD
    assert resolved.upload is not None
    assert len(resolved.upload.data) == INLINE_MEDIA_MAX_BYTES + 1


@pytest.mark.asyncio
async def test_file_handle_is_referenced_directly() -> None:
    handle = FileHandle(uri="https://files.example/f1", mime_type="audio/wav")

    resolved = await MediaResolver(_config(), FakeUploader()).resolve(
        [{"role": "user", "parts": [{"text": "transcribe"}]}], handle
    )

    assert resolved.media_path is MediaPath.FILE_REFERENCE
    assert resolved.use_direct is True
    assert resolved.contents[0]["parts"][0]["fileData"]["fileUri"] == handle.uri
    assert resolved.contents[0]["parts"][1] == {"text": "transcribe"}


def test_inject_part_shapes() -> None:
    part = {"inlineData": {"mimeType": "image/png", "data": ""}}

    assert inject_part("hi", part) == {"parts": [part, {"text": "hi"}]}
    assert inject_part({"parts": [{"text": "hi"}]}, part) == {"parts": [part, {"text": "hi"}]}
    assert inject_part([], part) == [{"role": "user", "parts": [part]}]
    with pytest.raises(ClientError):
        inject_part(42, part)


@pytest.mark.asyncio
async def test_base64_capture_goes_inline_when_small() -> None:
    media = RawBytesForUpload.from_base64("aGVsbG8=", "audio/m4a", file_name="note.m4a")

    resolved = await MediaResolver(_config(key=False), FakeUploader()).resolve("x", media)

    assert media.data == b"hello"
    assert media.display_name == "note.m4a"
    assert resolved.media_path is MediaPath.INLINE
    assert resolved.contents["parts"][0]["inlineData"]["data"] == "aGVsbG8="


@pytest.mark.asyncio
async def test_small_inline_video_is_rerouted_as_upload() -> None:
    media = InlineBytes(data=b"\x00" * (2 * MB), mime_type="video/mp4")

    resolved = await MediaResolver(_config(), FakeUploader()).resolve("describe", media)

    assert resolved.media_path is MediaPath.PROXY_UPLOAD
    assert resolved.upload is not None
    assert resolved.upload.mime_type == "video/mp4"
    assert resolved.contents == "describe"
    assert resolved.is_media_bearing is True
