"""Transport implementations."""

from .base import ProxyUpload, Transport
from .direct import DirectTransport
from .mock import MockTransport
from .proxy import ProxyTransport

__all__ = [
    "DirectTransport",
    "MockTransport",
    "ProxyTransport",
    "ProxyUpload",
    "Transport",
]
