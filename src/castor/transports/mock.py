"""Mock transport for running without network access."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from castor.transports._http import normalize_contents

if TYPE_CHECKING:
    from castor.transports.base import ProxyUpload
    from castor.types import GenerationConfig


class MockTransport:
    """Deterministic transport for demos and tests.

    Echoes the first text part. When structured output is requested the echo
    is wrapped in a JSON object so ``generate_json`` callers get valid JSON.
    """

    name = "mock"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        model: str,
        contents: Any,
        config: GenerationConfig,
        *,
        upload: ProxyUpload | None = None,
    ) -> dict[str, Any]:
        """Return a provider-shaped response without touching the network."""
        self.calls.append({"model": model, "contents": contents, "upload": upload})
        prompt = ""
        for turn in normalize_contents(contents):
            for part in turn.get("parts", []):
                if isinstance(part, dict) and isinstance(part.get("text"), str):
                    prompt = part["text"]
                    break
            if prompt:
                break

        text = f"echo: {prompt[:100]}"
        if config.effective_mime_type == "application/json":
            text = json.dumps({"echo": prompt[:100]})
        return {
            "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
            "modelVersion": model,
            "text": text,
        }

    async def aclose(self) -> None:
        return None
