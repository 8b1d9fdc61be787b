"""Fixed-order verification, the non-agentic strategy.

Cheapest and most exact checks first:
DOI lookup -> CrossRef metadata search -> Open Library -> URL -> web search.
The first valid adapter wins. If only the web search is left, an LLM
classifies its hits.
"""

import json
import logging
from typing import Callable, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel

from .agent import StatusCallback
from .exceptions import VerifierError
from .keypool import KeyPool
from .models import (
    AdapterResult,
    Reference,
    SearchClassification,
    Verdict,
    VerdictStatus,
)
from .prompts import SEARCH_CLASSIFY_PROMPT
from .sources import crossref, openlibrary, serper, url_check

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

NOTHING_FOUND_MESSAGE = "Couldn't find anything on the web on this one."


class Classifier(Protocol):
    async def chat_structured(
        self, prompt: str, response_model: type[T], system_prompt: str = ""
    ) -> T: ...


class WaterfallVerifier:
    def __init__(
        self,
        classifier: Classifier,
        http: httpx.AsyncClient,
        key_pool: KeyPool,
        max_retries: int = 2,
    ):
        self.classifier = classifier
        self.http = http
        self.key_pool = key_pool
        self.max_retries = max_retries

    async def _exact_checks(
        self, ref: Reference, record: Callable[[str], None]
    ) -> list[tuple[str, AdapterResult]]:
        """Run the identifier and catalog checks in order, stopping at the first hit.

        ``record`` is called with each step name before the step runs.
        """
        steps = [
            ("DOI Lookup", lambda: crossref.check_doi(self.http, ref.doi, ref.title, self.max_retries)),
            ("Metadata Search", lambda: crossref.search_metadata(self.http, ref, self.max_retries)),
            ("Catalog Search", lambda: openlibrary.search_title(self.http, ref.title)),
        ]
        if ref.url:
            steps.append(("URL Verification", lambda: url_check.check_url(self.http, ref.url, ref)))

        done = []
        for name, run in steps:
            record(name)
            result = await run()
            done.append((name, result))
            if result.is_valid:
                break
        return done

    async def verify(
        self,
        reference: Reference,
        on_status_update: Optional[StatusCallback] = None,
        performed_checks: Optional[set[str]] = None,
    ) -> Verdict:
        checks: list[str] = []
        notify = on_status_update or (lambda step, args=None: None)

        def record(name: str) -> None:
            notify(name, None)
            checks.append(name)
            if performed_checks is not None:
                performed_checks.add(name)

        for name, result in await self._exact_checks(reference, record):
            if result.is_valid:
                logger.info("ref %s: verified via %s", reference.id, result.source)
                return Verdict(
                    status=VerdictStatus.VERIFIED,
                    message=result.message,
                    checks_performed=checks,
                    verification_source=result.source,
                )

        record("Google Search")
        search = await serper.search_reference(
            self.http, reference, self.key_pool, self.max_retries
        )
        if search.details.get("failed"):
            logger.error("ref %s: web search failed: %s", reference.id, search.message)
            return Verdict(
                status=VerdictStatus.ERROR,
                message=search.message,
                checks_performed=checks,
            )

        hits = serper.format_hits(search)
        if not hits:
            logger.info("ref %s: no web results", reference.id)
            return Verdict(
                status=VerdictStatus.UNVERIFIED,
                message=NOTHING_FOUND_MESSAGE,
                checks_performed=checks,
            )

        prompt = SEARCH_CLASSIFY_PROMPT.format(
            reference=reference.raw,
            search_results=json.dumps(hits, indent=2),
        )
        try:
            classification = await self.classifier.chat_structured(
                prompt, SearchClassification
            )
        except VerifierError as e:
            logger.error("ref %s: search classification failed: %s", reference.id, e)
            return Verdict(
                status=VerdictStatus.ERROR,
                message=f"Could not classify web search results: {e.message}",
                checks_performed=checks,
            )

        status = VerdictStatus.VERIFIED if classification.is_valid else VerdictStatus.UNVERIFIED
        logger.info("ref %s: web search classified %s", reference.id, status.value)
        return Verdict(
            status=status,
            message=classification.message,
            checks_performed=checks,
            verification_source="Google Search" if classification.is_valid else None,
        )
