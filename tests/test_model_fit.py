"""
Tests for design matrices and model fitting
"""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from common_metrics.errors import InsufficientDataError, ModelConvergenceError
from common_metrics.estimation import cell_design, fit_linear_model, model_fit


def test_cell_design_skips_empty_cells():
    frame = pd.DataFrame({"group": ["a", "b", "a", "b"], "time": [1, 1, 2, 2]})
    X, cells = cell_design(frame, {"time": [1, 2], "group": ["a", "b", "c"]})

    assert cells == [(1, "a"), (1, "b"), (2, "a"), (2, "b")]
    assert X.shape == (4, 4)
    assert (X.sum(axis=1) == 1).all()


def test_cell_design_without_factors_is_intercept():
    frame = pd.DataFrame({"y": [1.0, 2.0, 3.0]})
    X, cells = cell_design(frame, {})
    assert cells == [()]
    assert list(X.columns) == ["(Intercept)"]


def test_ols_cell_means_and_difference():
    frame = pd.DataFrame({"group": ["a"] * 5 + ["b"] * 5, "y": [1, 2, 3, 4, 5, 3, 4, 5, 6, 7]})
    X, cells = cell_design(frame, {"group": ["a", "b"]})
    model = fit_linear_model(frame["y"], X)

    diff = model.combine(model.unit(0) - model.unit(1))
    assert model.mode == "unclustered"
    assert model.combine(model.unit(0)).estimate == pytest.approx(3.0)
    assert diff.estimate == pytest.approx(-2.0)
    assert diff.df == len(frame) - 2
    assert diff.std_error == pytest.approx(np.sqrt(2.5 * (1 / 5 + 1 / 5)))


def test_weights_must_match_parameters():
    frame = pd.DataFrame({"y": [1.0, 2.0, 3.0]})
    X, _ = cell_design(frame, {})
    model = fit_linear_model(frame["y"], X)
    with pytest.raises(ValueError):
        model.combine([1.0, 0.0])


def test_one_row_per_cell_is_insufficient():
    frame = pd.DataFrame({"group": ["a", "b"], "y": [1.0, 2.0]})
    X, _ = cell_design(frame, {"group": ["a", "b"]})
    with pytest.raises(InsufficientDataError):
        fit_linear_model(frame["y"], X)


def test_mixed_fit_moves_to_next_optimizer(monkeypatch):
    tried = []

    class _FlakyModel:
        def __init__(self, *args, **kwargs):
            pass

        def fit(self, reml, method, maxiter):
            tried.append(method)
            if method == "lbfgs":
                raise np.linalg.LinAlgError("Singular matrix")
            return SimpleNamespace(
                converged=True, cov_re=np.array([[0.5]]), scale=1.0, fe_params=np.array([4.0])
            )

    monkeypatch.setattr(model_fit.sm, "MixedLM", _FlakyModel)
    frame = pd.DataFrame({"y": np.arange(12, dtype=float), "class_id": [f"c{i % 4}" for i in range(12)]})
    X, _ = cell_design(frame, {})
    model = fit_linear_model(frame["y"], X, groups=frame["class_id"])

    assert tried == ["lbfgs", "bfgs"]
    assert model.mode == "clustered"
    assert model.combine([1.0]).estimate == pytest.approx(4.0)
    assert model.variance_components == {"cluster": 0.5, "residual": 1.0}


def test_mixed_fit_fails_after_every_optimizer(monkeypatch):
    class _BrokenModel:
        def __init__(self, *args, **kwargs):
            pass

        def fit(self, reml, method, maxiter):
            raise np.linalg.LinAlgError("Singular matrix")

    monkeypatch.setattr(model_fit.sm, "MixedLM", _BrokenModel)
    frame = pd.DataFrame({"y": np.arange(12, dtype=float), "class_id": [f"c{i % 4}" for i in range(12)]})
    X, _ = cell_design(frame, {})
    with pytest.raises(ModelConvergenceError) as excinfo:
        fit_linear_model(frame["y"], X, groups=frame["class_id"])
    assert "powell" in str(excinfo.value)
