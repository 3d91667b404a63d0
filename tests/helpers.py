"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off transport subclasses as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from castor.transports._http import extract_text
from castor.transports.base import ProxyUpload
from castor.types import GenerationConfig


def gemini_response(text: str, *, model: str = "gemini-test") -> dict[str, Any]:
    """Provider-shaped generateContent body with one text candidate."""
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}],
        "modelVersion": model,
    }


@dataclass
class FakeClock:
    """Manually advanced epoch clock."""

    now: float = 1_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RecordingSleep:
    """Async sleep double that records requested delays and returns at once."""

    delays: list[float] = field(default_factory=list)
    clock: FakeClock | None = None

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


def fixed_rand(value: float = 0.5):
    """Deterministic replacement for random.random."""
    return lambda: value


@dataclass
class ScriptedTransport:
    """Transport that replays a scripted sequence of results/exceptions.

    Items may be exceptions (raised), callables taking the model name (for
    per-model behavior), or dicts (returned, with ``text`` filled in).
    """

    script: list[Any] = field(default_factory=list)
    name: str = "scripted"
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    @property
    def models(self) -> list[str]:
        return [c["model"] for c in self.calls]

    async def generate(
        self,
        model: str,
        contents: Any,
        config: GenerationConfig,
        *,
        upload: ProxyUpload | None = None,
    ) -> dict[str, Any]:
        self.calls.append(
            {"model": model, "contents": contents, "config": config, "upload": upload}
        )
        item: Any = self.script.pop(0) if self.script else gemini_response("ok")
        if callable(item) and not isinstance(item, BaseException):
            item = item(model)
        if isinstance(item, BaseException):
            raise item
        payload = dict(item)
        if "text" not in payload:
            payload["text"] = extract_text(payload)
        return payload

    async def aclose(self) -> None:
        self.closed = True
