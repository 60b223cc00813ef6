"""HTTP clients bound to a service's rate limiter.

Every request made through such a client waits for the limiter first, and
every response (success or error status) feeds its rate limit headers back
into the limiter.
"""

from typing import TYPE_CHECKING

import httpx

from leadsync.app.core.config import settings

if TYPE_CHECKING:
    from leadsync.app.ratelimit.limiter import TokenLimiter


def create_rate_limited_client(limiter: "TokenLimiter", **kwargs) -> httpx.AsyncClient:
    """Create an HTTP client whose traffic is governed by ``limiter``.

    The returned client should be closed when done:
        async with create_rate_limited_client(registry.get("lemlist")) as client:
            response = await client.get("https://api.lemlist.com/api/campaigns")

    Args:
        limiter: Limiter to acquire before each request and update after it
        **kwargs: Override default settings. Can include:
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout / read_timeout / write_timeout / pool_timeout
            - max_connections / max_keepalive_connections
            - base_url, headers, transport: passed to httpx.AsyncClient

    Returns:
        A new httpx.AsyncClient instance.
    """
    timeout_override = kwargs.pop("timeout", None)
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            connect=kwargs.pop("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.pop("read_timeout", settings.httpx_read_timeout),
            write=kwargs.pop("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.pop("pool_timeout", settings.httpx_pool_timeout),
        )
    limits = httpx.Limits(
        max_connections=kwargs.pop("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=kwargs.pop(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
    )

    async def _acquire(request: httpx.Request) -> None:
        await limiter.acquire()

    async def _observe(response: httpx.Response) -> None:
        limiter.observe(response.headers)

    event_hooks = kwargs.pop("event_hooks", {}) or {}
    hooks = {
        "request": [_acquire, *event_hooks.get("request", [])],
        "response": [_observe, *event_hooks.get("response", [])],
    }
    return httpx.AsyncClient(timeout=timeout, limits=limits, event_hooks=hooks, **kwargs)
