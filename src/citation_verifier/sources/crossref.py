"""CrossRef API adapters.

Two checks live here: an exact DOI lookup that compares the registry title
with the cited title, and a bibliographic search whose candidates are scored
field by field (see scoring.py).
"""

import logging
import re
from typing import Optional
from urllib.parse import quote

import httpx

from ..exceptions import RateLimitError
from ..models import AdapterResult, CandidateRecord, Reference
from ..retry import retry_async
from ..scoring import MATCH_THRESHOLD, select_best

logger = logging.getLogger(__name__)

CROSSREF_API_URL = "https://api.crossref.org/works"
SEARCH_ROWS = 5
DOI_PREFIX = re.compile(r"^(https?://(dx\.)?doi\.org/|doi:\s*)", re.IGNORECASE)


def normalize_doi(doi: str) -> str:
    return DOI_PREFIX.sub("", doi.strip()).strip()


async def _get_json(
    client: httpx.AsyncClient, url: str, params: Optional[dict] = None
) -> dict:
    response = await client.get(url, params=params)
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitError(
            "CrossRef rate limit hit",
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    response.raise_for_status()
    return response.json()


def _titles_match(a: str, b: str) -> bool:
    a, b = " ".join(a.lower().split()), " ".join(b.lower().split())
    return bool(a and b) and (a in b or b in a)


async def check_doi(
    client: httpx.AsyncClient,
    doi: Optional[str],
    title: Optional[str],
    max_retries: int = 2,
) -> AdapterResult:
    """Resolve a DOI and compare the registry title with the cited title."""
    if not doi:
        return AdapterResult(is_valid=False, message="No DOI provided.", source="DOI")

    doi = normalize_doi(doi)
    url = f"{CROSSREF_API_URL}/{quote(doi, safe='/')}"
    try:
        data = await retry_async(_get_json, client, url, max_retries=max_retries)
    except Exception as e:
        logger.warning("CrossRef DOI lookup failed for '%s': %s", doi, e)
        return AdapterResult(
            is_valid=False,
            message=f"DOI lookup failed for {doi}: {e}",
            source="DOI",
        )

    work = data.get("message", {})
    titles = work.get("title") or []
    registry_title = titles[0] if titles else ""
    details = {"doi": doi, "registry_title": registry_title}

    if not registry_title:
        return AdapterResult(
            is_valid=False,
            message=f"DOI {doi} resolves but the registry record has no title.",
            source="DOI",
            details=details,
        )
    if not title:
        return AdapterResult(
            is_valid=False,
            message=f"DOI {doi} resolves to '{registry_title}' but there is no cited title to compare.",
            source="DOI",
            details=details,
        )
    if _titles_match(title, registry_title):
        return AdapterResult(
            is_valid=True,
            message=f"Verified via CrossRef: DOI {doi} matches title '{registry_title}'.",
            source="DOI",
            details=details,
        )
    return AdapterResult(
        is_valid=False,
        message=f"DOI {doi} exists but its title '{registry_title}' does not match the cited title.",
        source="DOI",
        details=details,
    )


def _build_query_params(ref: Reference) -> dict:
    params: dict[str, str | int] = {
        "query.bibliographic": ref.title or ref.raw,
        "rows": SEARCH_ROWS,
    }
    if ref.authors:
        params["query.author"] = ref.authors[0]
    return params


async def search_metadata(
    client: httpx.AsyncClient,
    ref: Reference,
    max_retries: int = 2,
) -> AdapterResult:
    """Search CrossRef and keep the best-scoring of the top candidates."""
    try:
        data = await retry_async(
            _get_json,
            client,
            CROSSREF_API_URL,
            _build_query_params(ref),
            max_retries=max_retries,
        )
    except Exception as e:
        logger.warning("CrossRef search failed for '%s': %s", (ref.title or ref.raw)[:50], e)
        return AdapterResult(
            is_valid=False, message=f"CrossRef search failed: {e}", source="Crossref"
        )

    items = data.get("message", {}).get("items", [])[:SEARCH_ROWS]
    if not items:
        return AdapterResult(
            is_valid=False, message="CrossRef returned no candidates.", source="Crossref"
        )

    candidates = [CandidateRecord.from_crossref(item) for item in items]
    best, match = select_best(ref, candidates)
    details = {
        "score": match.score,
        "matched_fields": match.matched_fields,
        "doi": best.doi if best else None,
        "title": best.title if best else None,
    }

    if best is not None and match.score >= MATCH_THRESHOLD:
        fields = ", ".join(match.matched_fields)
        return AdapterResult(
            is_valid=True,
            message=(
                f"CrossRef match (score {match.score:.2f}; matched {fields}): "
                f"'{best.title}' DOI {best.doi or 'n/a'}"
            ),
            source="Crossref",
            details=details,
        )

    return AdapterResult(
        is_valid=False,
        message=f"No CrossRef candidate scored above {MATCH_THRESHOLD} (best {match.score:.2f}).",
        source="Crossref",
        details=details,
    )
