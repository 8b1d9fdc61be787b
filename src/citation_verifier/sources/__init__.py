"""External source adapters.

Every adapter is an async function returning an AdapterResult and never
raising: network and parsing failures come back as ``is_valid=False``.
"""

import httpx

from ..config import Settings, settings as default_settings


def create_http_client(config: Settings | None = None) -> httpx.AsyncClient:
    """Shared AsyncClient with the configured timeout and User-Agent."""
    config = config or default_settings
    return httpx.AsyncClient(
        timeout=config.http_timeout,
        headers={"User-Agent": config.user_agent()},
    )
