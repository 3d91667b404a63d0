"""Direct transport: calls generateContent with a locally held credential."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from castor.errors import ClientError
from castor.transports._http import (
    OwnedClient,
    normalize_contents,
    post_json,
    system_instruction_wire,
)

if TYPE_CHECKING:
    import httpx

    from castor.transports.base import ProxyUpload
    from castor.types import GenerationConfig

logger = logging.getLogger(__name__)


def build_direct_body(contents: Any, config: GenerationConfig) -> dict[str, Any]:
    """Request body for ``models/{model}:generateContent``."""
    body: dict[str, Any] = {
        "contents": normalize_contents(contents),
        "generationConfig": config.to_wire(),
        "safetySettings": [s.to_wire() for s in config.safety_settings],
    }
    instruction = system_instruction_wire(config.system_instruction)
    if instruction is not None:
        body["systemInstruction"] = instruction
    return body


class DirectTransport:
    """Google Gemini REST API, authenticated with an API key."""

    name = "direct"

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = "https://generativelanguage.googleapis.com",
        api_version: str = "v1beta",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.api_version = api_version
        self._http = OwnedClient(http_client)

    def endpoint(self, model: str) -> str:
        return (
            f"{self.api_base}/{self.api_version}/models/"
            f"{quote(model, safe='-._')}:generateContent"
        )

    async def generate(
        self,
        model: str,
        contents: Any,
        config: GenerationConfig,
        *,
        upload: ProxyUpload | None = None,
    ) -> dict[str, Any]:
        if upload is not None:
            raise ClientError(
                "Direct transport cannot forward a proxy upload payload",
                hint="Upload the media first and pass a FileHandle.",
                model=model,
                phase="generate",
            )
        logger.debug("Calling Gemini directly for %s", model)
        return await post_json(
            self._http.client,
            self.endpoint(model),
            build_direct_body(contents, config),
            params={"key": self.api_key},
            model=model,
            prefix="Gemini generate failed",
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def __repr__(self) -> str:
        return f"DirectTransport(api_base={self.api_base!r}, api_key=[REDACTED])"
