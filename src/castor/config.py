"""Configuration: frozen Config resolved from arguments and environment."""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from castor.chain import normalize_model_name
from castor.errors import ConfigurationError
from castor.retry import RetryPolicy

load_dotenv()

DEFAULT_MODEL = "gemini-3-flash-preview"
FALLBACK_MODEL = "gemini-flash-latest"
EXTRA_FALLBACK_MODELS: tuple[str, ...] = (
    "gemini-flash-lite-latest",
    "gemini-robotics-er-1.5-preview",
)
GEMINI_API_BASE = "https://generativelanguage.googleapis.com"

# Upload-specific key first, then the general one.
_API_KEY_ENV_VARS = ("GEMINI_UPLOAD_KEY", "GEMINI_API_KEY")
_MIN_KEY_LENGTH = 10


def _usable_key(value: str | None) -> str | None:
    """Keys this short are placeholders left in .env files, not credentials."""
    if value and len(value.strip()) > _MIN_KEY_LENGTH:
        return value.strip()
    return None


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    return value.strip() if value and value.strip() else None


@dataclass(frozen=True)
class AppIdentity:
    """App-identity headers sent with direct uploads (restricted API keys)."""

    android_package: str | None = None
    android_cert: str | None = None
    ios_bundle_id: str | None = None

    @classmethod
    def from_env(cls) -> AppIdentity:
        return cls(
            android_package=_env("GEMINI_UPLOAD_ANDROID_PACKAGE"),
            android_cert=_env("GEMINI_UPLOAD_ANDROID_CERT"),
            ios_bundle_id=_env("GEMINI_UPLOAD_IOS_BUNDLE"),
        )

    def headers(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if self.android_package:
            out["X-Android-Package"] = self.android_package
        if self.android_cert:
            out["X-Android-Cert"] = self.android_cert
        if self.ios_bundle_id:
            out["X-Ios-Bundle-Identifier"] = self.ios_bundle_id
        return out


@dataclass(frozen=True)
class Config:
    """Immutable configuration for the generation client.

    At least one transport must be reachable: a proxy URL, a direct API key,
    or mock mode. Unset fields are resolved from the environment.

    Example:
        config = Config(proxy_url="https://example.net/.netlify/functions/gemini-proxy")
        # Direct key (optional) is resolved from GEMINI_UPLOAD_KEY / GEMINI_API_KEY
    """

    #: Auto-resolved from ``GEMINI_UPLOAD_KEY`` then ``GEMINI_API_KEY`` when *None*.
    api_key: str | None = None
    #: Auto-resolved from ``CASTOR_PROXY_URL`` when *None*.
    proxy_url: str | None = None
    #: Auto-resolved from ``GEMINI_MODEL`` when *None*.
    default_model: str | None = None
    #: Auto-resolved from ``GEMINI_FALLBACK_MODEL`` when *None*.
    fallback_model: str | None = None
    extra_fallback_models: tuple[str, ...] = EXTRA_FALLBACK_MODELS
    api_base: str = GEMINI_API_BASE
    api_version: str = "v1beta"
    app_identity: AppIdentity | None = None
    #: Extra headers sent to the proxy (integrity tokens and the like).
    proxy_headers: dict[str, str] = field(default_factory=dict)
    use_mock: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    upload_timeout_s: float = 120.0
    file_poll_interval_s: float = 1.0
    file_poll_max_attempts: int = 15

    def __post_init__(self) -> None:
        """Resolve environment defaults and validate configuration."""
        api_key = _usable_key(self.api_key)
        if api_key is None and self.api_key is None:
            api_key = next(
                (k for k in (_usable_key(os.environ.get(v)) for v in _API_KEY_ENV_VARS) if k),
                None,
            )
        object.__setattr__(self, "api_key", api_key)

        proxy_url = self.proxy_url if self.proxy_url is not None else _env("CASTOR_PROXY_URL")
        object.__setattr__(self, "proxy_url", proxy_url or None)

        object.__setattr__(
            self,
            "default_model",
            normalize_model_name(self.default_model or _env("GEMINI_MODEL"))
            or DEFAULT_MODEL,
        )
        object.__setattr__(
            self,
            "fallback_model",
            normalize_model_name(self.fallback_model or _env("GEMINI_FALLBACK_MODEL"))
            or FALLBACK_MODEL,
        )
        object.__setattr__(self, "extra_fallback_models", tuple(self.extra_fallback_models))
        if self.app_identity is None:
            object.__setattr__(self, "app_identity", AppIdentity.from_env())

        if self.upload_timeout_s <= 0:
            raise ConfigurationError(
                f"upload_timeout_s must be > 0, got {self.upload_timeout_s}",
                hint="This bounds the single upload request for large media.",
            )
        if self.file_poll_interval_s < 0:
            raise ConfigurationError(
                f"file_poll_interval_s must be ≥ 0, got {self.file_poll_interval_s}",
                hint="This is the pause between file status checks.",
            )
        if self.file_poll_max_attempts < 1:
            raise ConfigurationError(
                f"file_poll_max_attempts must be ≥ 1, got {self.file_poll_max_attempts}",
                hint="This bounds how long uploads wait to become ACTIVE.",
            )

        if not self.use_mock and not self.api_key and not self.proxy_url:
            raise ConfigurationError(
                "No transport configured",
                hint="Set CASTOR_PROXY_URL or GEMINI_API_KEY, or pass use_mock=True.",
            )

    @property
    def direct_available(self) -> bool:
        """Whether a local credential allows direct calls and uploads."""
        return self.api_key is not None

    @property
    def proxy_available(self) -> bool:
        return self.proxy_url is not None

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(default_model={self.default_model!r}, "
            f"fallback_model={self.fallback_model!r}, proxy_url={self.proxy_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
