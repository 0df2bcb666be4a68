"""
HTTP transport module.

The client never talks to the network directly; it dispatches each queued
request to a Transport. AiohttpTransport is the default implementation.
"""

from .aiohttp_transport import DEFAULT_TIMEOUT_SECONDS, AiohttpTransport, create_session
from .base import SUPPORTED_METHODS, Transport, TransportResponse

__all__ = [
    "AiohttpTransport",
    "DEFAULT_TIMEOUT_SECONDS",
    "SUPPORTED_METHODS",
    "Transport",
    "TransportResponse",
    "create_session",
]
