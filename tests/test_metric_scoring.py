"""
Tests for composite score calculation

Run with: pytest tests/test_metric_scoring.py
"""

import numpy as np
import pandas as pd
import pytest

from common_metrics.errors import MetricValidationError
from common_metrics.metrics import get_metric, rescale, score
from common_metrics.metrics.metric_scoring import condition_mask


def _engagement(**overrides):
    row = {"eng_interest": 3, "eng_like": 2, "eng_losttrack": 1, "eng_moreabout": 0}
    row.update(overrides)
    return pd.DataFrame([row])


def _ipg_rows():
    base = {"ca1_a": 1, "ca1_b": 0, "ca1_c": 1, "ca2_overall": 3, "ca3_overall": 4, "col": 2}
    return pd.DataFrame(
        [
            {**base, "form": "Literacy", "grade_level": "K", "rfs_overall": 3},
            {**base, "form": "Math", "grade_level": 3, "rfs_overall": np.nan},
            {**base, "form": "Literacy", "grade_level": 8, "rfs_overall": 2},
            {**base, "form": "Literacy", "grade_level": 3, "rfs_overall": np.nan},
            {**base, "form": np.nan, "grade_level": 2, "rfs_overall": 4},
        ]
    )


def test_engagement_simple_sum():
    """3 + 2 + 1 + 0 = 6"""
    scored, missing = score(_engagement(), get_metric("engagement"))
    assert scored.score_column == "cm_engagement"
    assert scored.data["cm_engagement"].iloc[0] == 6
    assert missing == 0


def test_missing_item_gives_missing_composite():
    scored, missing = score(_engagement(eng_interest=np.nan), get_metric("engagement"))
    assert pd.isna(scored.data["cm_engagement"].iloc[0])
    assert missing == 1
    assert scored.missing_count == 1


def test_simple_sum_matches_row_sums():
    rng = np.random.default_rng(7)
    metric = get_metric("expectations")
    data = pd.DataFrame(rng.integers(0, 6, size=(50, len(metric.items))), columns=list(metric.items)).astype(float)
    data.iloc[::5, 2] = np.nan

    scored, missing = score(data, metric)
    complete = data.notna().all(axis=1)

    assert missing == int((~complete).sum())
    assert scored.scores[complete].tolist() == data[complete].sum(axis=1).tolist()
    assert scored.scores[~complete].isna().all()


def test_scoring_does_not_touch_input():
    data = _engagement()
    before = data.copy()
    scored, _ = score(data, get_metric("engagement"))
    pd.testing.assert_frame_equal(data, before)
    assert "cm_engagement" not in data.columns
    assert scored.data is not data


def test_numeric_strings_are_scored():
    data = _engagement(eng_interest="3", eng_like="2")
    scored, _ = score(data, get_metric("engagement"))
    assert scored.scores.iloc[0] == 6


def test_invalid_data_is_never_scored():
    with pytest.raises(MetricValidationError):
        score(_engagement(eng_interest=4), get_metric("engagement"))


def test_rescale_preserves_endpoints():
    metric = get_metric("ipg")
    for item in metric.items:
        domain = metric.domain(item)
        mapped = rescale(pd.Series([min(domain), max(domain)], dtype=float), domain, (1, 4))
        assert mapped.tolist() == [1.0, 4.0]


def test_rescale_binary_item():
    mapped = rescale(pd.Series([0.0, 1.0]), (0, 1), (1, 4))
    assert mapped.tolist() == [1.0, 4.0]


def test_ipg_conditional_rfs():
    """RFS Overall counts only on K-5 Literacy rows; a missing form uses the default items."""
    scored, missing = score(_ipg_rows(), get_metric("ipg"))
    # Core Action 1 indicators 1, 0, 1 rescale to 4, 1, 4; plus 3 + 4 + 2
    base = 4 + 1 + 4 + 3 + 4 + 2
    values = scored.scores.tolist()

    assert values[0] == base + 3
    assert values[1] == base
    assert values[2] == base
    assert np.isnan(values[3])
    assert values[4] == base
    assert missing == 1


def test_condition_mask_handles_grade_labels():
    data = pd.DataFrame(
        {
            "form": ["literacy ", "Literacy", "Literacy", None, "Math"],
            "grade_level": ["Kindergarten", "5", 6, 1, 1],
        }
    )
    mask = condition_mask(data, get_metric("ipg").scoring)
    assert mask.tolist() == [True, True, False, False, False]


def test_condition_mask_rejects_tk_and_fractional_grades():
    data = pd.DataFrame({"form": ["Literacy"] * 4, "grade_level": ["TK", "5.5", "5.0", "K"]})
    mask = condition_mask(data, get_metric("ipg").scoring)
    assert mask.tolist() == [False, False, True, True]
