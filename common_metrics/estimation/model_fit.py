"""
Linear model fitting for composite scores.

One entry point, `fit_linear_model`, covers both cases the estimators need:

- unclustered: ordinary least squares (statsmodels OLS), residual df
- clustered: random-intercept model (statsmodels MixedLM, REML by default)
  with Satterthwaite degrees of freedom per linear combination

Estimators describe every quantity they report (a cell mean, a difference
of cells, a difference of differences) as a weight vector over the fixed
effects and ask the fitted model for it, so contrast and growth logic is
written once against `LinearEstimate`.
"""

import itertools
import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.numdiff import approx_fprime, approx_hess3
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .. import helper_functions as hf
from ..config import get_settings
from ..errors import InsufficientDataError, ModelConvergenceError

logger = logging.getLogger(__name__)

# Random-intercept variance below this fraction of the residual variance is
# treated as sitting on the boundary of the parameter space.
BOUNDARY_TOL = 1e-8


@dataclass(frozen=True)
class LinearEstimate:
    estimate: float
    std_error: float
    df: float


# ---------------------------------------------------------------------
# Design matrices
# ---------------------------------------------------------------------
def cell_design(frame: pd.DataFrame, factors: Mapping[str, Sequence]) -> Tuple[pd.DataFrame, List[tuple]]:
    """
    Cell-means design: one indicator column per observed combination of factor levels.

    With no factors the design is a single intercept column, whose coefficient
    is the mean. Cells are ordered by the given level order of each factor.

    Returns:
        (design matrix indexed like `frame`, list of cell keys in column order)
    """
    if not factors:
        return pd.DataFrame({"(Intercept)": np.ones(len(frame))}, index=frame.index), [()]

    columns = {}
    cells = []
    for cell in itertools.product(*factors.values()):
        indicator = np.ones(len(frame), dtype=bool)
        for column, level in zip(factors, cell):
            indicator &= (frame[column] == level).to_numpy()
        if indicator.any():
            cells.append(cell)
            columns[" / ".join(str(v) for v in cell)] = indicator.astype(float)
    return pd.DataFrame(columns, index=frame.index), cells


# ---------------------------------------------------------------------
# Random-intercept likelihood pieces
# ---------------------------------------------------------------------
class _RandomInterceptAlgebra:
    """
    Closed-form quantities for y = X b + u_j + e with u_j ~ N(0, s2u), e ~ N(0, s2e).

    The marginal covariance is block-diagonal with compound-symmetric blocks,
    so everything reduces to per-cluster sums.
    """

    def __init__(self, y: np.ndarray, X: np.ndarray, codes: np.ndarray):
        self.y = y
        self.X = X
        self.n, self.p = X.shape
        n_clusters = int(codes.max()) + 1
        self.sizes = np.bincount(codes, minlength=n_clusters).astype(float)
        self.x_sums = np.zeros((n_clusters, self.p))
        np.add.at(self.x_sums, codes, X)
        self.y_sums = np.bincount(codes, weights=y, minlength=n_clusters)
        self.codes = codes
        self.xtx = X.T @ X
        self.xty = X.T @ y

    def _gamma(self, s2u: float, s2e: float) -> np.ndarray:
        return s2u / (s2e + self.sizes * s2u)

    def information(self, theta: Sequence[float]) -> np.ndarray:
        """X' V^-1 X"""
        s2u, s2e = theta
        g = self._gamma(s2u, s2e)
        return (self.xtx - (self.x_sums * g[:, None]).T @ self.x_sums) / s2e

    def fixed_cov(self, theta: Sequence[float]) -> np.ndarray:
        return np.linalg.inv(self.information(theta))

    def loglik(self, theta: Sequence[float], reml: bool) -> float:
        s2u, s2e = theta
        if s2u < 0 or s2e <= 0:
            return -np.inf
        g = self._gamma(s2u, s2e)
        info = self.information(theta)
        xtvy = (self.xty - (self.x_sums * g[:, None]).T @ self.y_sums) / s2e
        beta = np.linalg.solve(info, xtvy)
        resid = self.y - self.X @ beta
        resid_sums = np.bincount(self.codes, weights=resid, minlength=len(self.sizes))
        quad = (resid @ resid - np.sum(g * resid_sums ** 2)) / s2e
        logdet = np.sum((self.sizes - 1) * np.log(s2e) + np.log(s2e + self.sizes * s2u))
        value = logdet + quad
        if reml:
            value += np.linalg.slogdet(info)[1]
        return -0.5 * value


def _steps(theta: np.ndarray) -> np.ndarray:
    return 1e-4 * np.maximum(np.abs(theta), 1e-6)


# ---------------------------------------------------------------------
# Fitted model
# ---------------------------------------------------------------------
class FittedModel:
    """Fixed-effect estimates with a rule for the df of any linear combination."""

    def __init__(
        self,
        params: np.ndarray,
        cov: np.ndarray,
        mode: str,
        n_obs: int,
        n_clusters: Optional[int],
        residual_df: float,
        df_rule: Optional[Callable[[np.ndarray], float]] = None,
        variance_components: Optional[Dict[str, float]] = None,
    ):
        self.params = params
        self.cov = cov
        self.mode = mode
        self.n_obs = n_obs
        self.n_clusters = n_clusters
        self.residual_df = residual_df
        self._df_rule = df_rule
        self.variance_components = variance_components or {}

    def combine(self, weights: Sequence[float]) -> LinearEstimate:
        L = np.asarray(weights, dtype=float)
        if L.shape != self.params.shape:
            raise ValueError(f"Expected {len(self.params)} weights, got {L.shape}")
        variance = float(L @ self.cov @ L)
        df = self._df_rule(L) if self._df_rule is not None else self.residual_df
        return LinearEstimate(estimate=float(L @ self.params), std_error=float(np.sqrt(max(variance, 0.0))), df=float(df))

    def unit(self, index: int) -> np.ndarray:
        L = np.zeros(len(self.params))
        L[index] = 1.0
        return L


def _fit_ols(y: np.ndarray, X: pd.DataFrame) -> FittedModel:
    result = sm.OLS(y, X).fit()
    params = np.asarray(result.params, dtype=float)
    if not np.all(np.isfinite(params)):
        raise ModelConvergenceError("OLS fit produced non-finite estimates (singular design)")
    return FittedModel(
        params=params,
        cov=np.asarray(result.cov_params(), dtype=float),
        mode=hf.UNCLUSTERED,
        n_obs=len(y),
        n_clusters=None,
        residual_df=float(result.df_resid),
    )


def _finite_fit(result) -> bool:
    s2u = float(np.asarray(result.cov_re)[0, 0])
    s2e = float(result.scale)
    params = np.asarray(result.fe_params, dtype=float)
    return bool(np.all(np.isfinite(params)) and np.isfinite(s2u) and np.isfinite(s2e) and s2e > 0)


# Tried in order; the first converged fit with finite estimates wins.
MIXED_METHODS = ("lbfgs", "bfgs", "powell")


def _fit_mixed(y: np.ndarray, X: pd.DataFrame, groups: pd.Series, reml: bool, max_iter: int) -> FittedModel:
    codes, uniques = pd.factorize(groups, sort=True)
    mixed = sm.MixedLM(y, X, groups=codes)
    result = None
    failures = []
    for method in MIXED_METHODS:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            try:
                attempt = mixed.fit(reml=reml, method=method, maxiter=max_iter)
            except (np.linalg.LinAlgError, ValueError) as e:
                failures.append(f"{method}: {e}")
                logger.debug(f"[Estimation] MixedLM {method} failed: {e}")
                continue
        for w in caught:
            logger.debug(f"[Estimation] statsmodels ({method}): {w.message}")
        if not getattr(attempt, "converged", True):
            failures.append(f"{method}: no convergence within {max_iter} iterations")
            continue
        if not _finite_fit(attempt):
            failures.append(f"{method}: non-finite estimates")
            continue
        result = attempt
        break

    if result is None:
        raise ModelConvergenceError(
            f"Mixed model fit failed ({len(y):,} rows, {len(uniques):,} clusters): " + "; ".join(failures)
        )

    s2u = max(float(np.asarray(result.cov_re)[0, 0]), 0.0)
    s2e = float(result.scale)
    params = np.asarray(result.fe_params, dtype=float)

    algebra = _RandomInterceptAlgebra(y, np.asarray(X, dtype=float), codes)
    theta = np.array([s2u, s2e])
    try:
        cov = algebra.fixed_cov(theta)
    except np.linalg.LinAlgError as e:
        raise ModelConvergenceError(f"Fixed-effect covariance is singular: {e}") from e

    residual_df = float(len(y) - X.shape[1])
    df_rule = _satterthwaite_rule(algebra, theta, reml, residual_df)

    return FittedModel(
        params=params,
        cov=cov,
        mode=hf.CLUSTERED,
        n_obs=len(y),
        n_clusters=len(uniques),
        residual_df=residual_df,
        df_rule=df_rule,
        variance_components={"cluster": s2u, "residual": s2e},
    )


def _satterthwaite_rule(
    algebra: _RandomInterceptAlgebra, theta: np.ndarray, reml: bool, residual_df: float
) -> Callable[[np.ndarray], float]:
    """
    df(L) = 2 (L'VL)^2 / (g' A g), with g the gradient of L'V(theta)L and A the
    asymptotic covariance of the variance components (inverse negative Hessian
    of the log-likelihood). Falls back to residual df when the cluster variance
    is on the boundary or A is not positive definite.
    """
    if theta[0] <= BOUNDARY_TOL * theta[1]:
        logger.debug("[Estimation] Cluster variance on boundary; using residual df")
        return lambda L: residual_df

    hess = approx_hess3(theta, lambda t: algebra.loglik(t, reml), epsilon=_steps(theta))
    try:
        A = np.linalg.inv(-hess)
    except np.linalg.LinAlgError:
        A = None
    if A is None or not np.all(np.isfinite(A)) or np.any(np.linalg.eigvalsh((A + A.T) / 2) <= 0):
        logger.debug("[Estimation] Variance-component information not positive definite; using residual df")
        return lambda L: residual_df

    def rule(L: np.ndarray) -> float:
        variance = float(L @ algebra.fixed_cov(theta) @ L)
        grad = np.ravel(
            approx_fprime(theta, lambda t: float(L @ algebra.fixed_cov(t) @ L), epsilon=_steps(theta), centered=True)
        )
        denom = float(grad @ A @ grad)
        if variance <= 0 or denom <= 0 or not np.isfinite(denom):
            return residual_df
        return float(min(max(2 * variance ** 2 / denom, 1.0), residual_df))

    return rule


def fit_linear_model(
    y: pd.Series,
    X: pd.DataFrame,
    groups: Optional[pd.Series] = None,
    reml: Optional[bool] = None,
    max_iter: Optional[int] = None,
) -> FittedModel:
    """
    Fit y on X, with a random intercept per value of `groups` when given.

    Raises:
        InsufficientDataError: fewer rows than needed to estimate any uncertainty
        ModelConvergenceError: the optimizer did not converge or the fit is singular
    """
    settings = get_settings()
    reml = settings.reml if reml is None else reml
    max_iter = max_iter or settings.max_iter

    y_arr = np.asarray(y, dtype=float)
    if len(y_arr) <= X.shape[1]:
        raise InsufficientDataError(
            f"Need more than {X.shape[1]} scored row(s) to estimate {X.shape[1]} mean(s), got {len(y_arr)}"
        )

    if groups is None:
        logger.debug(f"[Estimation] OLS fit: {len(y_arr):,} rows, {X.shape[1]} fixed effect(s)")
        return _fit_ols(y_arr, X)

    logger.debug(
        f"[Estimation] Mixed fit: {len(y_arr):,} rows, {groups.nunique():,} clusters, {X.shape[1]} fixed effect(s)"
    )
    return _fit_mixed(y_arr, X, groups, reml, max_iter)
