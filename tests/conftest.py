import httpx
import pytest

from citation_verifier.keypool import KeyPool
from citation_verifier.models import Reference


@pytest.fixture
async def http():
    async with httpx.AsyncClient(timeout=5) as client:
        yield client


@pytest.fixture
def key_pool():
    return KeyPool(["test-key"])


@pytest.fixture
def make_ref():
    def _make_ref(**kwargs) -> Reference:
        defaults = {
            "id": "ref_01",
            "authors": ["Vaswani, A.", "Shazeer, N."],
            "title": "Attention is all you need",
            "year": "2017",
            "raw": "Vaswani, A., & Shazeer, N. (2017). Attention is all you need.",
        }
        defaults.update(kwargs)
        return Reference(**defaults)

    return _make_ref
