from __future__ import annotations

import pytest

from search_intelligence_mcp.core.models import (
    AnalyticsQuery,
    DimensionFilter,
    MetricRow,
    TrendItem,
    to_dict,
)
from search_intelligence_mcp.errors import InputError


def _query(**overrides):
    params = {
        "site_url": "https://example.com/",
        "start_date": "2024-01-01",
        "end_date": "2024-01-28",
    }
    params.update(overrides)
    return AnalyticsQuery.build(**params)


def test_build_accepts_filter_mappings() -> None:
    query = _query(
        dimensions=["query", "page"],
        filters=[{"dimension": "query", "operator": "contains", "expression": "shoes"}],
    )
    assert query.dimensions == ("query", "page")
    assert query.filters == (DimensionFilter("query", "contains", "shoes"),)


def test_filter_operator_defaults_to_equals() -> None:
    query = _query(filters=[{"dimension": "country", "expression": "usa"}])
    assert query.filters[0].operator == "equals"


@pytest.mark.parametrize(
    "overrides",
    [
        {"start_date": "2024-13-01"},
        {"start_date": "2024-02-01", "end_date": "2024-01-01"},
        {"dimensions": ["browser"]},
        {"dimensions": ["query", "query"]},
        {"row_limit": 0},
        {"row_limit": 25001},
        {"start_row": -1},
        {"search_type": "maps"},
        {"site_url": "  "},
        {"filters": [{"dimension": "query", "operator": "startsWith", "expression": "a"}]},
        {"filters": [{"dimension": "query"}]},
    ],
)
def test_invalid_queries_raise_input_error(overrides) -> None:
    with pytest.raises(InputError):
        _query(**overrides)


def test_input_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        _query(dimensions=["browser"])


def test_fingerprint_ignores_filter_order() -> None:
    a = DimensionFilter("query", "contains", "shoes")
    b = DimensionFilter("country", "equals", "usa")
    assert _query(filters=[a, b]).fingerprint() == _query(filters=[b, a]).fingerprint()


def test_fingerprint_distinguishes_parameters() -> None:
    base = _query(dimensions=["query"])
    assert base.fingerprint() != _query(dimensions=["page"]).fingerprint()
    assert base.fingerprint() != _query(dimensions=["query"], row_limit=10).fingerprint()
    assert base.fingerprint("gsc") != base.fingerprint("bing")
    assert base.fingerprint("gsc") == _query(dimensions=["query"]).fingerprint("gsc")


def test_metric_row_key_and_dimensions() -> None:
    row = MetricRow(keys=("shoes", "https://example.com/a"), clicks=3)
    assert row.key == "shoes | https://example.com/a"
    assert row.dimension(1) == "https://example.com/a"
    assert row.dimension(5) == ""
    assert row.metric("clicks") == 3.0

    with pytest.raises(InputError):
        row.metric("sessions")


def test_to_dict_handles_lists_and_none() -> None:
    item = TrendItem("shoes", 200, 100, 100.0, "rising")
    assert to_dict(item)["direction"] == "rising"
    assert [d["key"] for d in to_dict([item, item])] == ["shoes", "shoes"]
    assert to_dict(None) is None
