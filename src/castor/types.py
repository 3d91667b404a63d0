"""Request, media, and result types."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeAlias

from pydantic import BaseModel

from castor.errors import ConfigurationError, InternalError

ResponseSchemaInput: TypeAlias = type[BaseModel] | dict[str, Any]

_MIB = 1024 * 1024

#: Largest payload embedded directly in a generation request.
INLINE_MEDIA_MAX_BYTES = 4 * _MIB


@dataclass(frozen=True)
class SafetySetting:
    """One provider safety threshold, e.g. ``HARM_CATEGORY_HARASSMENT``."""

    category: str
    threshold: str

    def to_wire(self) -> dict[str, str]:
        return {"category": self.category, "threshold": self.threshold}


@dataclass(frozen=True)
class GenerationConfig:
    """Generation options. ``None`` / empty means provider default."""

    response_mime_type: str | None = None
    #: Pydantic ``BaseModel`` subclass or JSON Schema dict for structured output.
    response_schema: ResponseSchemaInput | None = None
    system_instruction: str | None = None
    safety_settings: tuple[SafetySetting, ...] = ()

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        if self.response_mime_type is not None and (
            not isinstance(self.response_mime_type, str)
            or "/" not in self.response_mime_type
        ):
            raise ConfigurationError(
                "response_mime_type must be a MIME type string",
                hint="Pass response_mime_type='application/json' or 'text/plain'.",
            )
        if self.response_schema is not None and not (
            isinstance(self.response_schema, dict)
            or (
                isinstance(self.response_schema, type)
                and issubclass(self.response_schema, BaseModel)
            )
        ):
            raise ConfigurationError(
                "response_schema must be a Pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )
        if self.system_instruction is not None and not isinstance(
            self.system_instruction, str
        ):
            raise ConfigurationError(
                "system_instruction must be a string",
                hint="Pass system_instruction='You are a concise assistant.'",
            )
        settings = tuple(self.safety_settings)
        for s in settings:
            if not isinstance(s, SafetySetting):
                raise ConfigurationError(
                    f"Expected SafetySetting, got {type(s).__name__}",
                    hint="Use SafetySetting(category=..., threshold=...).",
                )
        object.__setattr__(self, "safety_settings", settings)

    @property
    def effective_mime_type(self) -> str | None:
        """Structured output implies JSON unless a mime type was given."""
        if self.response_mime_type is not None:
            return self.response_mime_type
        if self.response_schema is not None:
            return "application/json"
        return None

    def response_schema_model(self) -> type[BaseModel] | None:
        """Return the Pydantic schema class when one was provided."""
        schema = self.response_schema
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema
        return None

    def to_wire(self) -> dict[str, Any]:
        """Provider ``generationConfig`` fields (camelCase)."""
        out: dict[str, Any] = {}
        mime = self.effective_mime_type
        if mime is not None:
            out["responseMimeType"] = mime
        model = self.response_schema_model()
        if model is not None:
            out["responseJsonSchema"] = model.model_json_schema()
        elif isinstance(self.response_schema, dict):
            out["responseSchema"] = self.response_schema
        return out


# --- Media references ---


def _is_inline_candidate(mime_type: str) -> bool:
    lowered = mime_type.lower()
    return lowered.startswith(("image/", "audio/"))


@dataclass(frozen=True)
class InlineBytes:
    """Small payload embedded directly in the request."""

    data: bytes
    mime_type: str

    def to_part(self) -> dict[str, Any]:
        return {
            "inlineData": {
                "mimeType": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


@dataclass(frozen=True)
class FileHandle:
    """Provider-side reference to an uploaded, ACTIVE file."""

    uri: str
    mime_type: str
    name: str | None = None

    def to_part(self) -> dict[str, Any]:
        return {"fileData": {"fileUri": self.uri, "mimeType": self.mime_type}}


@dataclass(frozen=True)
class RawBytesForUpload:
    """Local media whose delivery path is chosen per request.

    ``data`` is the in-memory payload (enables inline and proxy upload);
    ``path`` is the local file (enables direct upload).
    """

    mime_type: str
    data: bytes | None = None
    path: Path | None = None
    file_name: str | None = None

    def __post_init__(self) -> None:
        if self.path is not None and not isinstance(self.path, Path):
            object.__setattr__(self, "path", Path(self.path))
        if self.data is None and self.path is None:
            raise ConfigurationError(
                "RawBytesForUpload needs data or a path",
                hint="Pass data=b'...' or path=Path('clip.mp4').",
            )

    @classmethod
    def from_file(cls, path: str | Path, mime_type: str) -> RawBytesForUpload:
        """Reference a local file without reading it."""
        p = Path(path)
        return cls(mime_type=mime_type, path=p, file_name=p.name)

    @classmethod
    def from_base64(
        cls, data_b64: str, mime_type: str, *, file_name: str | None = None
    ) -> RawBytesForUpload:
        """Build from a base64 string as captured by a camera or picker."""
        return cls(
            mime_type=mime_type, data=base64.b64decode(data_b64), file_name=file_name
        )

    @property
    def size_bytes(self) -> int | None:
        if self.data is not None:
            return len(self.data)
        return None

    @property
    def is_video(self) -> bool:
        return self.mime_type.lower().startswith("video/")

    @property
    def can_inline(self) -> bool:
        """Image or audio, bytes in memory, and within the inline limit."""
        size = self.size_bytes
        return (
            size is not None
            and not self.is_video
            and _is_inline_candidate(self.mime_type)
            and size <= INLINE_MEDIA_MAX_BYTES
        )

    @property
    def display_name(self) -> str:
        if self.file_name:
            return self.file_name
        if self.path is not None:
            return self.path.name
        return "upload"


MediaReference: TypeAlias = InlineBytes | FileHandle | RawBytesForUpload


@dataclass(frozen=True)
class RequestSpec:
    """One logical generation request. Immutable per call."""

    contents: Any
    config: GenerationConfig = field(default_factory=GenerationConfig)
    model: str | None = None
    media: MediaReference | None = None
    prefer_direct: bool = False


class MediaPath(str, Enum):
    """How the media payload reached the provider."""

    NONE = "none"
    INLINE = "inline"
    FILE_REFERENCE = "file_reference"
    DIRECT_UPLOAD = "direct_upload"
    PROXY_UPLOAD = "proxy_upload"
    PROXY_UPLOAD_AFTER_DIRECT_FAILURE = "proxy_upload_after_direct_failure"


@dataclass(frozen=True)
class GenerateResult:
    """Successful generation: text plus the raw provider payload."""

    text: str
    raw: dict[str, Any]
    model: str
    attempts: int = 1
    media_path: MediaPath = MediaPath.NONE


# --- Upload state machine ---


class UploadState(str, Enum):
    """Local view of a direct upload's lifecycle."""

    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    POLLING = "POLLING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


@dataclass
class UploadRecord:
    """Mutable record of one upload, advanced only by the uploader."""

    mime_type: str
    name: str | None = None
    uri: str | None = None
    state: UploadState = UploadState.PENDING
    #: Last ``state`` string reported by the status endpoint.
    last_remote_state: str = "UNKNOWN"
    polls: int = 0

    def to_handle(self) -> FileHandle:
        if self.state is not UploadState.ACTIVE or not self.uri:
            raise InternalError(f"Upload not usable in state {self.state.value}")
        return FileHandle(uri=self.uri, mime_type=self.mime_type, name=self.name)
