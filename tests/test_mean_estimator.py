"""
Tests for the clustered mean estimator

Simulated data uses a fixed seed; assertions check properties of the
estimates (agreement with sample means, sign convention, clustering
adjustments) rather than exact model output.
"""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from common_metrics.errors import InsufficientDataError, MetricValidationError, ModelConvergenceError
from common_metrics.estimation import estimate_mean
from common_metrics.estimation import model_fit
from common_metrics.metrics import ScoredDataset, get_metric


def _scored(data, metric="engagement"):
    return ScoredDataset(
        data=data,
        metric=get_metric(metric),
        score_column=f"cm_{metric}",
        missing_count=int(data[f"cm_{metric}"].isna().sum()),
    )


def _classroom_data(n_classes=20, per_class=10, class_sd=1.5, seed=11, metric="engagement"):
    rng = np.random.default_rng(seed)
    class_effects = rng.normal(0, class_sd, n_classes)
    rows = []
    for c in range(n_classes):
        for i in range(per_class):
            rows.append(
                {
                    "class_id": f"class_{c}",
                    "group": "B" if i % 2 == 0 else "A",
                    f"cm_{metric}": 6 + class_effects[c] + rng.normal(0, 1),
                }
            )
    return pd.DataFrame(rows)


def test_unclustered_overall_mean():
    data = _classroom_data()
    report = estimate_mean(_scored(data))
    scores = data["cm_engagement"]

    assert report.mode == "unclustered"
    assert report.overall.estimate == pytest.approx(scores.mean())
    assert report.overall.std_error == pytest.approx(scores.std() / np.sqrt(len(scores)))
    assert report.overall.df == len(scores) - 1
    assert report.overall.lower < report.overall.estimate < report.overall.upper


def test_unclustered_group_means_and_contrast_sign():
    """'B' appears first in the data, so the contrast is B - A."""
    data = _classroom_data()
    report = estimate_mean(_scored(data), equity_group="group")
    means = data.groupby("group")["cm_engagement"].mean()

    assert report.group_order == ("B", "A")
    assert report.group_estimates["A"].estimate == pytest.approx(means["A"])
    assert report.group_estimates["B"].estimate == pytest.approx(means["B"])

    assert len(report.contrasts) == 1
    contrast = report.contrasts[frozenset(("A", "B"))]
    assert (contrast.first, contrast.second) == ("B", "A")
    assert contrast.estimate == pytest.approx(means["B"] - means["A"])
    assert 0 <= contrast.p_value <= 1
    assert report.contrast("A", "B").estimate == pytest.approx(means["A"] - means["B"])


def test_explicit_group_order_sets_sign():
    data = _classroom_data()
    report = estimate_mean(_scored(data), equity_group="group", group_order=["A", "B"])
    contrast = report.contrasts[frozenset(("A", "B"))]
    assert (contrast.first, contrast.second) == ("A", "B")


def test_ordered_categorical_sets_order():
    data = _classroom_data()
    data["group"] = pd.Categorical(data["group"], categories=["A", "B"], ordered=True)
    report = estimate_mean(_scored(data), equity_group="group")
    assert report.group_order == ("A", "B")


def test_clustered_fit_widens_standard_error():
    data = _classroom_data()
    naive = estimate_mean(_scored(data))
    clustered = estimate_mean(_scored(data), cluster_enabled=True)

    assert clustered.mode == "clustered"
    assert clustered.overall.n_clusters == 20
    assert clustered.overall.std_error > naive.overall.std_error
    # Balanced design: Satterthwaite df for the mean is close to classes - 1
    assert 15 < clustered.overall.df < 23
    assert clustered.findings == ()


def test_clustered_contrasts():
    data = _classroom_data()
    report = estimate_mean(_scored(data), cluster_enabled=True, equity_group="group")
    contrast = report.contrast("B", "A")
    diff = report.group_estimates["B"].estimate - report.group_estimates["A"].estimate

    assert report.mode == "clustered"
    assert contrast.estimate == pytest.approx(diff)
    assert contrast.std_error > 0
    assert contrast.df > 1
    assert report.group_estimates["A"].n_clusters == 20


def test_unclustered_engagement_warns():
    report = estimate_mean(_scored(_classroom_data()))
    assert [f.check for f in report.findings] == ["clustering"]


def test_missing_cluster_column_falls_back_with_warning():
    data = _classroom_data().drop(columns=["class_id"])
    report = estimate_mean(_scored(data), cluster_enabled=True)
    assert report.mode == "unclustered"
    assert [f.check for f in report.findings] == ["clustering"]
    assert "class_id" in report.findings[0].message


def test_single_cluster_falls_back():
    data = _classroom_data()
    data["class_id"] = "only_class"
    report = estimate_mean(_scored(data), cluster_enabled=True)
    assert report.mode == "unclustered"


def test_no_clustering_warning_for_staff_survey():
    data = _classroom_data(metric="expectations")
    report = estimate_mean(_scored(data, "expectations"))
    assert report.findings == ()


def test_many_groups_warn_but_compute():
    data = _classroom_data(n_classes=30)
    data["group"] = [f"g{i % 6}" for i in range(len(data))]
    report = estimate_mean(_scored(data), equity_group="group")

    assert "equity_group_size" in [f.check for f in report.findings]
    assert len(report.group_estimates) == 6
    assert len(report.contrasts) == 15


def test_rows_with_missing_score_or_group_are_excluded():
    data = _classroom_data()
    data.loc[:4, "cm_engagement"] = np.nan
    data.loc[5:7, "group"] = None
    report = estimate_mean(_scored(data), equity_group="group")

    assert report.missing_count == 5
    assert report.overall.n_obs == len(data) - 5
    assert report.excluded_rows == 3


def test_missing_equity_column():
    with pytest.raises(MetricValidationError):
        estimate_mean(_scored(_classroom_data()), equity_group="gender")


def test_too_few_rows():
    data = _classroom_data().iloc[:1]
    with pytest.raises(InsufficientDataError):
        estimate_mean(_scored(data))


def test_non_convergence_is_fatal(monkeypatch):
    class _FailingModel:
        def __init__(self, *args, **kwargs):
            pass

        def fit(self, *args, **kwargs):
            return SimpleNamespace(converged=False)

    monkeypatch.setattr(model_fit.sm, "MixedLM", _FailingModel)
    with pytest.raises(ModelConvergenceError):
        estimate_mean(_scored(_classroom_data()), cluster_enabled=True)


def test_input_is_not_modified():
    data = _classroom_data()
    before = data.copy()
    estimate_mean(_scored(data), cluster_enabled=True, equity_group="group")
    pd.testing.assert_frame_equal(data, before)


def test_staff_survey_ignores_class_clustering():
    data = _classroom_data(metric="expectations")
    report = estimate_mean(_scored(data, "expectations"), cluster_enabled=True)
    assert report.mode == "unclustered"
    assert report.overall.n_clusters is None
    assert report.findings == ()


def test_repeated_index_labels_are_fit_once():
    first = _classroom_data(seed=1)
    second = _classroom_data(seed=2)
    second["class_id"] = second["class_id"] + "_b"
    data = pd.concat([first, second])
    report = estimate_mean(_scored(data), cluster_enabled=True, equity_group="group")

    assert report.mode == "clustered"
    assert report.overall.n_obs == len(data)
    assert report.overall.n_clusters == 40
    assert report.group_estimates["A"].n_obs == (data["group"] == "A").sum()


def test_variance_components_reported():
    data = _classroom_data()
    clustered = estimate_mean(_scored(data), cluster_enabled=True)
    naive = estimate_mean(_scored(data))

    assert set(clustered.variance_components) == {"cluster", "residual"}
    assert clustered.variance_components["cluster"] > 0
    assert len(naive.variance_components) == 0
