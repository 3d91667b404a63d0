"""Shared HTTP plumbing for the proxy and direct transports."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from castor.classify import error_from_response, wrap_transport_error
from castor.errors import ClientError, MalformedResponseError


class OwnedClient:
    """An httpx.AsyncClient that is closed only if we created it."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._owned = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Per-attempt deadlines are enforced by the caller.
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._owned and self._client is not None:
            await self._client.aclose()
            self._client = None


def normalize_contents(contents: Any) -> list[dict[str, Any]]:
    """Coerce caller contents into the provider's list-of-turns shape."""
    if isinstance(contents, str):
        return [{"role": "user", "parts": [{"text": contents}]}]
    if isinstance(contents, dict) and isinstance(contents.get("parts"), list):
        return [{"role": contents.get("role", "user"), "parts": contents["parts"]}]
    if isinstance(contents, list):
        return contents
    raise ClientError(
        f"Unsupported contents type: {type(contents).__name__}",
        hint="Pass a string, {'parts': [...]}, or a list of turns.",
        phase="generate",
    )


def system_instruction_wire(text: str | None, *, role: str | None = None) -> dict[str, Any] | None:
    if not text:
        return None
    out: dict[str, Any] = {"parts": [{"text": text}]}
    if role is not None:
        out["role"] = role
    return out


def extract_text(raw: dict[str, Any]) -> str:
    """Concatenate text parts of the first candidate."""
    candidates = raw.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        p["text"]
        for p in parts
        if isinstance(p, dict) and isinstance(p.get("text"), str) and not p.get("thought")
    )


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, str] | None = None,
    timeout_s: float | None = None,
    model: str,
    prefix: str,
) -> dict[str, Any]:
    """POST JSON and return the decoded body, raising tagged errors."""
    try:
        response = await client.post(
            url,
            json=body,
            headers=headers,
            params=params,
            timeout=timeout_s if timeout_s is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except asyncio.CancelledError:
        raise
    except Exception as e:
        raise wrap_transport_error(e, phase="generate", model=model, prefix=prefix) from e

    if not response.is_success:
        raise error_from_response(response, phase="generate", model=model, prefix=prefix)

    try:
        payload = response.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"{prefix}: response body is not JSON",
            status_code=response.status_code,
            model=model,
            phase="generate",
        ) from e
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"{prefix}: expected a JSON object, got {type(payload).__name__}",
            status_code=response.status_code,
            model=model,
            phase="generate",
        )
    payload["text"] = extract_text(payload)
    return payload
