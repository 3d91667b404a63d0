"""Proxied transport: a trusted intermediary holds the real credential."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from castor.transports._http import OwnedClient, post_json, system_instruction_wire

if TYPE_CHECKING:
    from castor.transports.base import ProxyUpload
    from castor.types import GenerationConfig

logger = logging.getLogger(__name__)


def build_proxy_config(config: GenerationConfig) -> dict[str, Any]:
    """Config object as the proxy expects it (flat, camelCase)."""
    out: dict[str, Any] = dict(config.to_wire())
    instruction = system_instruction_wire(config.system_instruction, role="system")
    if instruction is not None:
        out["systemInstruction"] = instruction
    if config.safety_settings:
        out["safetySettings"] = [s.to_wire() for s in config.safety_settings]
    return out


class ProxyTransport:
    """POSTs ``{model, contents, config, upload?}`` to the proxy endpoint."""

    name = "proxy"

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self._http = OwnedClient(http_client)

    async def generate(
        self,
        model: str,
        contents: Any,
        config: GenerationConfig,
        *,
        upload: ProxyUpload | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "contents": contents,
            "config": build_proxy_config(config),
        }
        if upload is not None:
            body["upload"] = upload.to_wire()
        logger.debug("Calling proxy for %s (upload=%s)", model, upload is not None)
        return await post_json(
            self._http.client,
            self.url,
            body,
            headers=self.headers,
            model=model,
            prefix="Proxy generate failed",
        )

    async def is_available(self, *, timeout_s: float = 5.0) -> bool:
        """Health check: a GET answered with 200 or 405 means the proxy is up."""
        try:
            response = await self._http.client.get(self.url, timeout=timeout_s)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as exc:
            logger.warning("Proxy not available: %s", exc)
            return False
        return response.status_code in (200, 405)

    async def aclose(self) -> None:
        await self._http.aclose()
