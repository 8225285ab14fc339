"""
Tests for the metric catalog
"""

import pytest

from common_metrics.errors import CatalogError, UnknownMetricError
from common_metrics.metrics import ConditionalSum, MetricCatalog, RescaledSum, SimpleSum, get_metric, list_metrics
from common_metrics.metrics.metric_catalog import BUILTIN_CATALOG_PATH, definition_from_dict


def test_builtin_metrics():
    assert set(list_metrics()) == {
        "engagement", "relevance", "belonging", "expectations", "tntp_core", "ipg", "assignments",
    }


@pytest.mark.parametrize(
    "name,n_items,domain,clustered",
    [
        ("engagement", 4, (0, 1, 2, 3), True),
        ("relevance", 4, (0, 1, 2, 3), True),
        ("belonging", 4, (0, 1, 2, 3), True),
        ("expectations", 6, (0, 1, 2, 3, 4, 5), False),
        ("tntp_core", 4, (1, 2, 3, 4, 5), False),
        ("assignments", 3, (0, 1, 2), True),
    ],
)
def test_simple_sum_metrics(name, n_items, domain, clustered):
    metric = get_metric(name)
    assert len(metric.items) == n_items
    assert all(metric.domain(item) == domain for item in metric.items)
    assert metric.requires_cluster_id is clustered
    assert isinstance(metric.scoring, SimpleSum)


def test_ipg_definition():
    metric = get_metric("ipg")
    assert metric.requires_cluster_id is False
    assert metric.domain("ca1_a") == (0, 1)
    assert metric.domain("ca2_overall") == (1, 2, 3, 4)
    assert set(metric.auxiliary) == {"grade_level", "form"}
    assert isinstance(metric.scoring, ConditionalSum)
    assert isinstance(metric.scoring.base, RescaledSum)
    assert metric.scoring.conditional_items == ("rfs_overall",)
    assert "rfs_overall" not in metric.default_items


def test_lookup_is_case_insensitive():
    assert get_metric(" Engagement ").name == "engagement"


def test_unknown_metric():
    with pytest.raises(UnknownMetricError) as excinfo:
        get_metric("happiness")
    assert "engagement" in str(excinfo.value)
    with pytest.raises(KeyError):
        get_metric("happiness")


def test_extra_catalog_file_adds_metric(tmp_path):
    extra = tmp_path / "extra.yaml"
    extra.write_text(
        "metrics:\n"
        "  agency:\n"
        "    requires_cluster_id: true\n"
        "    domain: [1, 4]\n"
        "    items: [agy_choice, agy_voice]\n"
        "    scoring:\n"
        "      type: simple_sum\n",
        encoding="utf-8",
    )
    catalog = MetricCatalog.from_files(BUILTIN_CATALOG_PATH, extra)
    assert "agency" in catalog
    assert "engagement" in catalog
    assert catalog.get("agency").domain("agy_voice") == (1, 2, 3, 4)


def test_bad_scoring_type_rejected():
    with pytest.raises(CatalogError):
        definition_from_dict("bad", {"domain": [0, 3], "items": ["a"], "scoring": {"type": "mean"}})


def test_items_without_domain_rejected():
    with pytest.raises(CatalogError):
        definition_from_dict("bad", {"items": ["a", "b"], "scoring": {"type": "simple_sum"}})


def test_definitions_compare_by_content():
    entry = {"domain": [0, 3], "items": ["a", "b"], "scoring": {"type": "simple_sum"}}
    assert definition_from_dict("x", entry) == definition_from_dict("x", entry)
    assert definition_from_dict("x", entry) != get_metric("engagement")
