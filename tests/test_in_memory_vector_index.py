"""Tests for the brute-force vector index."""

import pytest

from answer_cache.exceptions import ProviderError
from conftest import unit


@pytest.fixture
async def index(vector_index):
    await vector_index.upsert("cache-a", unit(1, 0, 0), {"zone": "yucatan", "development": "amura"}, "cache")
    await vector_index.upsert("cache-b", unit(1, 1, 0), {"zone": "yucatan", "development": "amura"}, "cache")
    await vector_index.upsert("cache-c", unit(1, 0, 0), {"zone": "yucatan", "development": "kanha"}, "cache")
    return vector_index


async def test_results_are_ordered_by_score(index):
    matches = await index.query(unit(1, 0, 0), 5, {}, "cache")

    assert {m.id for m in matches[:2]} == {"cache-a", "cache-c"}
    assert matches[0].score == pytest.approx(1.0)
    assert matches[-1].id == "cache-b"
    assert matches[-1].score == pytest.approx(0.7071, abs=1e-3)


async def test_filter_is_exact_match_on_metadata(index):
    matches = await index.query(unit(1, 0, 0), 5, {"zone": "yucatan", "development": "amura"}, "cache")

    assert {m.id for m in matches} == {"cache-a", "cache-b"}
    assert matches[0].metadata["development"] == "amura"


async def test_top_k_truncates(index):
    assert len(await index.query(unit(1, 0, 0), 1, {}, "cache")) == 1


async def test_namespaces_are_isolated(index):
    assert await index.query(unit(1, 0, 0), 5, {}, "documents") == []
    assert index.count("cache") == 3


async def test_upsert_replaces_vector_and_metadata(index):
    await index.upsert("cache-a", unit(0, 0, 1), {"zone": "quintana", "development": "amura"}, "cache")

    matches = await index.query(unit(0, 0, 1), 1, {"zone": "quintana"}, "cache")

    assert matches[0].id == "cache-a"
    assert index.count("cache") == 3


async def test_dimension_mismatch_raises(index):
    with pytest.raises(ProviderError):
        await index.query([1.0, 0.0], 5, {}, "cache")
