"""URL reachability check with a light content match.

When a page cannot be fetched, the result carries status-specific guidance
so the decision step can tell "this URL is gone" apart from "this URL is
paywalled" and pick another source.
"""

import logging
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from ..config import USER_AGENT
from ..models import AdapterResult, Reference

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 15000
CONTENT_MATCH_THRESHOLD = 0.7
ACCEPTED_CONTENT_TYPES = ("text/html", "text/plain", "application/json", "application/xhtml")


def extract_text_content(raw_html: str) -> str:
    """Visible text of an HTML page, whitespace collapsed."""
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True)
    return " ".join(text.split())[:MAX_CONTENT_CHARS]


def status_guidance(status: int) -> dict:
    """Meaning, likely causes and next step for a failed fetch."""
    if status == 404:
        return {
            "meaning": "Not Found (404)",
            "reasons": [
                "The resource no longer exists at this URL",
                "The URL may have been mistyped or is incorrect",
                "The content has been moved or deleted",
            ],
            "suggestion": "This URL is confirmed to not exist. Try DOI lookup or literature search.",
        }
    if status == 403:
        return {
            "meaning": "Forbidden (403)",
            "reasons": [
                "Access to this resource is restricted",
                "Authentication may be required",
            ],
            "suggestion": "This URL exists but is not publicly accessible. Try other sources.",
        }
    if status == 401:
        return {
            "meaning": "Unauthorized (401)",
            "reasons": [
                "Authentication is required to access this resource",
                "The citation may refer to a paywalled or private resource",
            ],
            "suggestion": "This resource requires authentication. Try academic databases.",
        }
    if 400 <= status < 500:
        return {
            "meaning": f"Client Error ({status})",
            "reasons": [
                "The URL may be incorrect or incomplete",
                "The resource may no longer be available at this location",
            ],
            "suggestion": "Try alternative verification methods.",
        }
    if 500 <= status < 600:
        return {
            "meaning": f"Server Error ({status})",
            "reasons": [
                "The website may be temporarily down or overloaded",
            ],
            "suggestion": "This may be temporary; try DOI lookup or literature search instead.",
        }
    return {
        "meaning": "Unknown error",
        "reasons": ["The URL couldn't be accessed due to an unknown error"],
        "suggestion": "Consider verifying the reference using DOI or literature search instead.",
    }


def _surname(author: str) -> str:
    author = author.strip()
    if "," in author:
        return author.split(",")[0].strip()
    parts = author.split()
    return parts[-1] if parts else ""


def match_content(content: str, ref: Optional[Reference]) -> tuple[float, list[str]]:
    """Fraction of the available reference fields found in the page text.

    Returns (confidence, missing field names). A reference with nothing to
    compare yields confidence 1.0: reachability alone is the check.
    """
    if ref is None:
        return 1.0, []
    text = content.lower()
    checks: dict[str, bool] = {}
    if ref.title:
        checks["title"] = ref.title.lower().strip(" .") in text
    surnames = [_surname(a).lower() for a in ref.authors if _surname(a)]
    if surnames:
        checks["authors"] = any(s in text for s in surnames)
    if ref.year:
        checks["year"] = ref.year in text
    if not checks:
        return 1.0, []
    passed = sum(checks.values())
    missing = [name for name, ok in checks.items() if not ok]
    return passed / len(checks), missing


def _unreachable(url: str, status: int, error: str, network_error: bool = False) -> AdapterResult:
    guidance = status_guidance(status)
    info = {
        "isAccessible": False,
        "statusMeaning": guidance["meaning"],
        "possibleReasons": guidance["reasons"],
        "suggestion": guidance["suggestion"],
    }
    if network_error:
        info["networkError"] = True
    return AdapterResult(
        is_valid=False,
        message=f"URL is inaccessible ({guidance['meaning']}): {error}",
        source="URL",
        details={"url": url, "status": status, "verificationInfo": info},
    )


async def check_url(
    client: httpx.AsyncClient,
    url: Optional[str],
    ref: Optional[Reference] = None,
) -> AdapterResult:
    if not url:
        return AdapterResult(is_valid=False, message="No URL provided.", source="URL")

    target = url.strip()
    if not target.startswith(("http://", "https://")):
        target = "https://" + target

    try:
        response = await client.get(
            target,
            follow_redirects=True,
            headers={
                "User-Agent": f"Mozilla/5.0 (compatible; {USER_AGENT})",
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
        )
    except httpx.InvalidURL as e:
        return _unreachable(url, 400, f"Invalid URL format: {e}")
    except httpx.ConnectError as e:
        logger.warning("URL check could not connect to %s: %s", target, e)
        return _unreachable(url, 503, str(e), network_error=True)
    except Exception as e:
        logger.warning("URL check failed for %s: %s", target, e)
        return _unreachable(url, 500, str(e), network_error=True)

    if response.status_code >= 400:
        return _unreachable(url, response.status_code, response.reason_phrase)

    content_type = response.headers.get("content-type", "")
    if not any(t in content_type for t in ACCEPTED_CONTENT_TYPES):
        return AdapterResult(
            is_valid=False,
            message=f"URL is reachable but has unsupported content type: {content_type or 'unknown'}",
            source="URL",
            details={"url": url, "status": response.status_code},
        )

    content = extract_text_content(response.text)
    if not content:
        return AdapterResult(
            is_valid=False,
            message="URL is reachable but has no readable content.",
            source="URL",
            details={"url": url, "status": response.status_code},
        )

    confidence, missing = match_content(content, ref)
    details = {
        "url": url,
        "status": response.status_code,
        "confidence": round(confidence, 3),
        "content": content[:2000],
    }
    if confidence >= CONTENT_MATCH_THRESHOLD:
        return AdapterResult(
            is_valid=True,
            message=f"URL verified with {confidence * 100:.1f}% confidence.",
            source="URL",
            details=details,
        )
    return AdapterResult(
        is_valid=False,
        message=f"URL content verification failed: {', '.join(m + ' not found' for m in missing)}",
        source="URL",
        details=details,
    )
