"""Orchestrator: the single public entry point for generation calls.

Flow per call: cooldown check -> media resolution -> candidate chain ->
retry controller driving one transport -> GenerateResult or tagged error.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
from typing import TYPE_CHECKING, Any

from castor.chain import build_candidate_chain
from castor.config import Config
from castor.errors import ConfigurationError, NoTransportAvailableError
from castor.media import MediaResolver
from castor.parsing import parse_json_text
from castor.ratelimit import default_rate_limiter
from castor.retry import run_candidate_chain
from castor.transports import DirectTransport, MockTransport, ProxyTransport
from castor.transports._http import OwnedClient, extract_text
from castor.types import GenerateResult, GenerationConfig, RequestSpec
from castor.uploads import FileUploader

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    import httpx

    from castor.media import ResolvedMedia
    from castor.ratelimit import RateLimiter
    from castor.retry import RetryPolicy
    from castor.transports import Transport
    from castor.types import MediaReference, ResponseSchemaInput

logger = logging.getLogger(__name__)


class Orchestrator:
    """Resilient generation client.

    Collaborators are injected; anything left as None is built from
    ``config`` on first use and shares one HTTP client. The rate limiter
    defaults to the process-wide instance.

    Example:
        async with Orchestrator(Config(proxy_url="https://example.net/generate")) as client:
            result = await client.generate("Summarize my week")
            print(result.text)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        proxy: Transport | None = None,
        direct: Transport | None = None,
        uploader: FileUploader | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config if config is not None else Config()
        self.rate_limiter = rate_limiter if rate_limiter is not None else default_rate_limiter
        self._proxy = proxy
        self._direct = direct
        self._uploader = uploader
        self._mock: MockTransport | None = None
        self._sleep = sleep
        self._rand = rand
        self._http = OwnedClient(http_client)

    # --- Collaborators ---

    @property
    def proxy(self) -> Transport | None:
        if self._proxy is None and self.config.proxy_url:
            self._proxy = ProxyTransport(
                self.config.proxy_url,
                headers=self.config.proxy_headers,
                http_client=self._http.client,
            )
        return self._proxy

    @property
    def direct(self) -> Transport | None:
        if self._direct is None and self.config.api_key:
            self._direct = DirectTransport(
                self.config.api_key,
                api_base=self.config.api_base,
                api_version=self.config.api_version,
                http_client=self._http.client,
            )
        return self._direct

    @property
    def uploader(self) -> FileUploader:
        if self._uploader is None:
            self._uploader = FileUploader(
                self.config, http_client=self._http.client, sleep=self._sleep
            )
        return self._uploader

    @property
    def mock(self) -> MockTransport:
        if self._mock is None:
            self._mock = MockTransport()
        return self._mock

    # --- Cooldown ---

    def is_rate_limited(self) -> bool:
        return self.rate_limiter.is_rate_limited()

    def remaining_cooldown_s(self) -> float:
        return self.rate_limiter.remaining_cooldown_s()

    # --- Generation ---

    async def generate(
        self,
        contents: Any,
        config: GenerationConfig | None = None,
        *,
        model: str | None = None,
        media: MediaReference | None = None,
        prefer_direct: bool = False,
        retry: RetryPolicy | None = None,
    ) -> GenerateResult:
        """Generate free text for *contents*.

        Args:
            contents: A prompt string, ``{"parts": [...]}``, or a list of turns.
            config: Generation options (mime type, schema, safety, system instruction).
            model: Requested model; tried before the configured defaults.
            media: Optional media; its delivery path is chosen automatically.
            prefer_direct: Use the local credential instead of the proxy when possible.
            retry: Overrides ``Config.retry`` for this call.

        Raises:
            QuotaError: Cooldown active, or every model is out of quota.
            APIError: Any other classified failure once the chain is exhausted.
        """
        spec = RequestSpec(
            contents=contents,
            config=config if config is not None else GenerationConfig(),
            model=model,
            media=media,
            prefer_direct=prefer_direct,
        )
        return await self.execute(spec, retry=retry)

    async def execute(
        self, spec: RequestSpec, *, retry: RetryPolicy | None = None
    ) -> GenerateResult:
        """Run a prebuilt request."""
        self.rate_limiter.check()
        policy = retry if retry is not None else self.config.retry

        resolved = await MediaResolver(self.config, self.uploader).resolve(
            spec.contents, spec.media, prefer_direct=spec.prefer_direct
        )
        transport = self._select_transport(resolved)
        chain = build_candidate_chain(
            spec.model,
            self.config.default_model,
            self.config.fallback_model,
            self.config.extra_fallback_models,
            limit=policy.max_models,
        )
        timeout_s = (
            policy.media_request_timeout_s
            if resolved.is_media_bearing
            else policy.request_timeout_s
        )
        logger.debug(
            "Generating via %s over %s (media=%s)",
            transport.name,
            list(chain),
            resolved.media_path.value,
        )

        async def call(model: str) -> dict[str, Any]:
            return await transport.generate(
                model, resolved.contents, spec.config, upload=resolved.upload
            )

        raw, used_model, attempts = await run_candidate_chain(
            call,
            chain,
            policy=policy,
            rate_limiter=self.rate_limiter,
            timeout_s=timeout_s,
            sleep=self._sleep,
            rand=self._rand,
        )
        text = raw.get("text")
        return GenerateResult(
            text=text if isinstance(text, str) else extract_text(raw),
            raw=raw,
            model=used_model,
            attempts=attempts,
            media_path=resolved.media_path,
        )

    async def generate_json(
        self,
        contents: Any,
        config: GenerationConfig | None = None,
        *,
        schema: ResponseSchemaInput | None = None,
        model: str | None = None,
        media: MediaReference | None = None,
        prefer_direct: bool = False,
        retry: RetryPolicy | None = None,
    ) -> Any:
        """Generate and parse a JSON response.

        With a Pydantic model as ``schema`` (or ``config.response_schema``)
        the result is a validated model instance; otherwise the decoded JSON.

        Raises:
            MalformedResponseError: Empty text, invalid JSON, or schema mismatch.
        """
        config = _json_config(config, schema)
        result = await self.generate(
            contents,
            config,
            model=model,
            media=media,
            prefer_direct=prefer_direct,
            retry=retry,
        )
        return parse_json_text(
            result.text, config.response_schema_model(), model=result.model
        )

    def _select_transport(self, resolved: ResolvedMedia) -> Transport:
        if self.config.use_mock:
            return self.mock
        if resolved.use_direct:
            direct = self.direct
            if direct is None:
                raise ConfigurationError(
                    "Direct transport requested but no API key is configured",
                    hint="Set GEMINI_UPLOAD_KEY or GEMINI_API_KEY.",
                )
            return direct
        proxy = self.proxy
        if proxy is not None:
            return proxy
        if resolved.upload is not None:
            raise NoTransportAvailableError(
                "Media needs the proxy upload path but no proxy is configured",
                hint="Set CASTOR_PROXY_URL.",
                phase="media",
            )
        direct = self.direct
        if direct is None:
            raise NoTransportAvailableError(
                "No transport configured", hint="Set CASTOR_PROXY_URL or GEMINI_API_KEY."
            )
        return direct

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Close the HTTP client if this orchestrator created it."""
        await self._http.aclose()

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def _json_config(
    config: GenerationConfig | None, schema: ResponseSchemaInput | None
) -> GenerationConfig:
    """Ensure the request asks for JSON, attaching *schema* when given."""
    config = config if config is not None else GenerationConfig()
    if schema is not None:
        config = dataclasses.replace(config, response_schema=schema)
    if config.effective_mime_type is None:
        config = dataclasses.replace(config, response_mime_type="application/json")
    return config
