"""Tests for the fixed-order waterfall verifier."""

import re

import pytest

from citation_verifier.exceptions import DecisionStepError
from citation_verifier.keypool import KeyPool
from citation_verifier.models import SearchClassification, VerdictStatus
from citation_verifier.waterfall import NOTHING_FOUND_MESSAGE, WaterfallVerifier

CROSSREF_SEARCH = re.compile(r"https://api\.crossref\.org/works\?.*")
OPEN_LIBRARY = re.compile(r"https://openlibrary\.org/search\.json.*")
SERPER_SEARCH = "https://google.serper.dev/search"


class FakeClassifier:
    def __init__(self, answer):
        self.answer = answer
        self.prompts = []

    async def chat_structured(self, prompt, response_model, system_prompt=""):
        self.prompts.append(prompt)
        if isinstance(self.answer, Exception):
            raise self.answer
        assert response_model is SearchClassification
        return self.answer


@pytest.fixture
def make_waterfall(http, key_pool):
    def _make_waterfall(answer=None):
        classifier = FakeClassifier(answer or SearchClassification(is_valid=True, message="ok"))
        return WaterfallVerifier(classifier, http, key_pool, max_retries=0)

    return _make_waterfall


def _nothing_in_catalogs(httpx_mock):
    httpx_mock.add_response(url=CROSSREF_SEARCH, json={"message": {"items": []}})
    httpx_mock.add_response(url=OPEN_LIBRARY, json={"numFound": 0, "docs": []})


class TestWaterfall:
    async def test_doi_match_stops_the_chain(self, make_waterfall, make_ref, httpx_mock):
        httpx_mock.add_response(
            url="https://api.crossref.org/works/10.5555/3295222.3295349",
            json={"message": {"title": ["Attention is all you need"]}},
        )
        ref = make_ref(doi="10.5555/3295222.3295349")

        verdict = await make_waterfall().verify(ref)

        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.verification_source == "DOI"
        assert verdict.checks_performed == ["DOI Lookup"]
        assert len(httpx_mock.get_requests()) == 1

    async def test_catalog_hit(self, make_waterfall, make_ref, httpx_mock):
        httpx_mock.add_response(url=CROSSREF_SEARCH, json={"message": {"items": []}})
        httpx_mock.add_response(
            url=OPEN_LIBRARY,
            json={"numFound": 1, "docs": [{"title": "Attention is all you need"}]},
        )

        verdict = await make_waterfall().verify(make_ref())

        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.verification_source == "Open Library"
        assert verdict.checks_performed == ["DOI Lookup", "Metadata Search", "Catalog Search"]

    async def test_no_web_hits_is_unverified(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(method="POST", url=SERPER_SEARCH, json={"organic": []})
        steps = []

        verdict = await make_waterfall().verify(
            make_ref(), on_status_update=lambda step, args=None: steps.append(step)
        )

        assert verdict.status == VerdictStatus.UNVERIFIED
        assert verdict.message == NOTHING_FOUND_MESSAGE
        assert steps[-1] == "Google Search"

    async def test_hits_classified_invalid(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=SERPER_SEARCH,
            json={"organic": [{"title": "A paper citing it", "link": "https://x.org", "snippet": "..."}]},
        )
        waterfall = make_waterfall(
            SearchClassification(is_valid=False, message="Only citing papers were found.")
        )

        verdict = await waterfall.verify(make_ref())

        assert verdict.status == VerdictStatus.UNVERIFIED
        assert verdict.message == "Only citing papers were found."
        assert "https://x.org" in waterfall.classifier.prompts[0]

    async def test_hits_classified_valid(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=SERPER_SEARCH,
            json={"organic": [{"title": "Attention is all you need", "link": "https://arxiv.org", "snippet": ""}]},
        )

        verdict = await make_waterfall().verify(make_ref())

        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.verification_source == "Google Search"

    async def test_classification_failure_is_error(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=SERPER_SEARCH,
            json={"organic": [{"title": "t", "link": "https://x.org", "snippet": ""}]},
        )

        verdict = await make_waterfall(DecisionStepError("model crashed")).verify(make_ref())

        assert verdict.status == VerdictStatus.ERROR
        assert "model crashed" in verdict.message

    async def test_url_checked_only_when_present(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(
            url="https://example.com/attention",
            html="<html><body>Attention is all you need. Vaswani 2017</body></html>",
        )
        ref = make_ref(url="https://example.com/attention")

        verdict = await make_waterfall().verify(ref)

        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.verification_source == "URL"
        assert verdict.checks_performed[-1] == "URL Verification"

    async def test_rate_limited_search_is_error(self, make_waterfall, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        httpx_mock.add_response(method="POST", url=SERPER_SEARCH, status_code=429)
        waterfall = make_waterfall()

        verdict = await waterfall.verify(make_ref())

        assert verdict.status == VerdictStatus.ERROR
        assert verdict.message != NOTHING_FOUND_MESSAGE
        assert "rate limit" in verdict.message
        assert verdict.checks_performed[-1] == "Google Search"
        assert waterfall.classifier.prompts == []

    async def test_missing_search_keys_is_error(self, http, make_ref, httpx_mock):
        _nothing_in_catalogs(httpx_mock)
        classifier = FakeClassifier(SearchClassification(is_valid=True, message="ok"))
        waterfall = WaterfallVerifier(classifier, http, KeyPool([]), max_retries=0)

        verdict = await waterfall.verify(make_ref())

        assert verdict.status == VerdictStatus.ERROR
        assert "No API keys" in verdict.message

    async def test_status_updates_arrive_as_each_step_starts(
        self, make_waterfall, make_ref, httpx_mock
    ):
        steps = []

        def status_update(step, args=None):
            steps.append((step, len(httpx_mock.get_requests())))

        httpx_mock.add_response(url=CROSSREF_SEARCH, json={"message": {"items": []}})
        httpx_mock.add_response(
            url=OPEN_LIBRARY,
            json={"numFound": 1, "docs": [{"title": "Attention is all you need"}]},
        )

        await make_waterfall().verify(make_ref(), on_status_update=status_update)

        # DOI lookup makes no request without a DOI
        assert steps == [("DOI Lookup", 0), ("Metadata Search", 0), ("Catalog Search", 1)]
