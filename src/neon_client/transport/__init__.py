"""Network transport: HTTP requests, push-channels, timeouts and retries."""

from neon_client.transport.aiohttp_transport import AiohttpChannel, AiohttpTransport
from neon_client.transport.retry_policy import RetryPolicy, retry, with_timeout
from neon_client.transport.types import Channel, HttpResponse, Transport, TransportError

__all__ = [
    "AiohttpChannel",
    "AiohttpTransport",
    "Channel",
    "HttpResponse",
    "RetryPolicy",
    "Transport",
    "TransportError",
    "retry",
    "with_timeout",
]
