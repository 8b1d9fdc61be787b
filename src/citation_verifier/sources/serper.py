"""Google web and scholar search through the Serper API.

Presence-only: a search is valid when at least one organic result comes
back. The hits are returned in ``details`` so that the decision step (or the
waterfall's classifier) can judge them.
"""

import logging
from typing import Optional

import httpx

from ..exceptions import RateLimitError
from ..keypool import KeyPool
from ..models import AdapterResult, Reference
from ..retry import retry_async

logger = logging.getLogger(__name__)

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SERPER_SCHOLAR_URL = "https://google.serper.dev/scholar"
NUM_RESULTS = 10


def build_search_query(ref: Reference, include_url: bool = True) -> str:
    """Concatenate the bibliographic fields into a free-text query."""
    fields = [
        " ".join(ref.authors) if ref.authors else None,
        ref.title,
        ref.journal,
        ref.year,
        ref.volume,
        ref.pages,
        ref.publisher,
        ref.conference,
        ref.url if include_url else None,
    ]
    return " ".join(f for f in fields if f)


async def _post_search(
    client: httpx.AsyncClient, endpoint: str, query: str, key_pool: KeyPool
) -> dict:
    # One key per attempt
    response = await client.post(
        endpoint,
        json={"q": query, "num": NUM_RESULTS},
        headers={"X-API-KEY": key_pool.next(), "Content-Type": "application/json"},
    )
    if response.status_code == 429:
        raise RateLimitError("Serper rate limit hit")
    response.raise_for_status()
    return response.json()


async def _search(
    client: httpx.AsyncClient,
    endpoint: str,
    query: str,
    key_pool: KeyPool,
    source: str,
    max_retries: int,
) -> AdapterResult:
    if not query.strip():
        return AdapterResult(is_valid=False, message="Empty search query.", source=source)

    try:
        data = await retry_async(
            _post_search, client, endpoint, query, key_pool, max_retries=max_retries
        )
    except Exception as e:
        logger.warning("%s error for '%s': %s", source, query[:50], e)
        return AdapterResult(
            is_valid=False,
            message=f"{source} failed: {e}",
            source=source,
            details={"query": query, "failed": True},
        )

    organic = [
        {
            "title": hit.get("title"),
            "link": hit.get("link"),
            "snippet": hit.get("snippet"),
        }
        for hit in data.get("organic") or []
    ]
    if not organic:
        return AdapterResult(
            is_valid=False,
            message=f"{source} returned no results.",
            source=source,
            details={"query": query, "organic": []},
        )
    return AdapterResult(
        is_valid=True,
        message=f"{source} returned {len(organic)} results.",
        source=source,
        details={"query": query, "organic": organic},
    )


async def search_web(
    client: httpx.AsyncClient,
    query: str,
    key_pool: KeyPool,
    max_retries: int = 2,
) -> AdapterResult:
    return await _search(
        client, SERPER_SEARCH_URL, query, key_pool, "Google Search", max_retries
    )


async def search_scholar(
    client: httpx.AsyncClient,
    query: str,
    key_pool: KeyPool,
    max_retries: int = 2,
) -> AdapterResult:
    return await _search(
        client, SERPER_SCHOLAR_URL, query, key_pool, "Scholar Search", max_retries
    )


async def search_reference(
    client: httpx.AsyncClient,
    ref: Reference,
    key_pool: KeyPool,
    max_retries: int = 2,
) -> AdapterResult:
    """Web search with the URL in the query, then without it if nothing came back.

    A search that failed outright is returned as is.
    """
    result = await search_web(client, build_search_query(ref, True), key_pool, max_retries)
    if result.is_valid or result.details.get("failed") or not ref.url:
        return result
    logger.debug("ref %s: retrying web search without URL", ref.id)
    return await search_web(client, build_search_query(ref, False), key_pool, max_retries)


def format_hits(result: Optional[AdapterResult]) -> list[dict]:
    if result is None:
        return []
    return list(result.details.get("organic") or [])
