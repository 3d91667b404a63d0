"""Transport protocol: minimal interface for generation transports."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from castor.types import GenerationConfig


@dataclass(frozen=True)
class ProxyUpload:
    """Media the proxy uploads server-side before generating."""

    data: bytes
    mime_type: str
    file_name: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "dataBase64": base64.b64encode(self.data).decode("ascii"),
            "mimeType": self.mime_type,
        }
        if self.file_name:
            payload["fileName"] = self.file_name
        return payload


@runtime_checkable
class Transport(Protocol):
    """One way of reaching the provider's generateContent."""

    name: str

    async def generate(
        self,
        model: str,
        contents: Any,
        config: GenerationConfig,
        *,
        upload: ProxyUpload | None = None,
    ) -> dict[str, Any]:
        """Return the raw provider response, or raise a tagged APIError."""
        ...

    async def aclose(self) -> None:
        """Release owned network resources."""
        ...
