"""Open Library title search (presence-only, no scoring)."""

import logging
from typing import Optional

import httpx

from ..models import AdapterResult

logger = logging.getLogger(__name__)

OPEN_LIBRARY_URL = "https://openlibrary.org/search.json"


async def search_title(client: httpx.AsyncClient, title: Optional[str]) -> AdapterResult:
    if not title:
        return AdapterResult(
            is_valid=False,
            message="No title provided for Open Library search.",
            source="Open Library",
        )

    try:
        response = await client.get(OPEN_LIBRARY_URL, params={"title": title, "limit": 5})
        response.raise_for_status()
        data = response.json()
    except Exception as e:
        logger.warning("Open Library error for '%s': %s", title[:50], e)
        return AdapterResult(
            is_valid=False,
            message=f"Open Library search failed: {e}",
            source="Open Library",
        )

    docs = data.get("docs") or []
    if not docs:
        return AdapterResult(
            is_valid=False,
            message="Open Library returned no matching records.",
            source="Open Library",
        )

    first = docs[0]
    return AdapterResult(
        is_valid=True,
        message=f"Verified via Open Library: '{first.get('title', title)}'.",
        source="Open Library",
        details={
            "num_found": data.get("numFound", len(docs)),
            "title": first.get("title"),
            "authors": first.get("author_name"),
            "first_publish_year": first.get("first_publish_year"),
        },
    )
