"""
Result types returned by the estimators
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import pandas as pd
from scipy import stats

from ..errors import Finding
from .model_fit import LinearEstimate


@dataclass(frozen=True)
class Estimate:
    label: str
    estimate: float
    std_error: float
    lower: float
    upper: float
    df: float
    mode: str
    n_obs: int
    n_clusters: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "estimate": self.estimate,
            "std_error": self.std_error,
            "lower": self.lower,
            "upper": self.upper,
            "df": self.df,
            "mode": self.mode,
            "n_obs": self.n_obs,
            "n_clusters": self.n_clusters,
        }


@dataclass(frozen=True)
class Contrast:
    """first minus second. The sign follows the group order of the call that produced it."""

    first: Any
    second: Any
    estimate: float
    std_error: float
    df: float
    t_value: float
    p_value: float
    lower: float
    upper: float
    mode: str

    @property
    def label(self) -> str:
        return f"{self.first} - {self.second}"

    @property
    def key(self) -> FrozenSet:
        return frozenset((self.first, self.second))

    def reversed(self) -> "Contrast":
        return Contrast(
            first=self.second,
            second=self.first,
            estimate=-self.estimate,
            std_error=self.std_error,
            df=self.df,
            t_value=-self.t_value,
            p_value=self.p_value,
            lower=-self.upper,
            upper=-self.lower,
            mode=self.mode,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "contrast": self.label,
            "first": self.first,
            "second": self.second,
            "estimate": self.estimate,
            "std_error": self.std_error,
            "df": self.df,
            "t_value": self.t_value,
            "p_value": self.p_value,
            "lower": self.lower,
            "upper": self.upper,
            "mode": self.mode,
        }


ContrastSet = Mapping[FrozenSet, Contrast]


def _critical_value(df: float, confidence: float) -> float:
    return float(stats.t.ppf(1 - (1 - confidence) / 2, df))


def make_estimate(label: str, lin: LinearEstimate, mode: str, confidence: float, n_obs: int, n_clusters: Optional[int] = None) -> Estimate:
    margin = _critical_value(lin.df, confidence) * lin.std_error
    return Estimate(
        label=label,
        estimate=lin.estimate,
        std_error=lin.std_error,
        lower=lin.estimate - margin,
        upper=lin.estimate + margin,
        df=lin.df,
        mode=mode,
        n_obs=n_obs,
        n_clusters=n_clusters,
    )


def make_contrast(first, second, lin: LinearEstimate, mode: str, confidence: float) -> Contrast:
    t_value = lin.estimate / lin.std_error if lin.std_error > 0 else float("nan")
    p_value = float(2 * stats.t.sf(abs(t_value), lin.df)) if lin.std_error > 0 else float("nan")
    margin = _critical_value(lin.df, confidence) * lin.std_error
    return Contrast(
        first=first,
        second=second,
        estimate=lin.estimate,
        std_error=lin.std_error,
        df=lin.df,
        t_value=t_value,
        p_value=p_value,
        lower=lin.estimate - margin,
        upper=lin.estimate + margin,
        mode=mode,
    )


def lookup_contrast(contrasts: ContrastSet, first, second) -> Contrast:
    """Contrast for first - second, flipping the stored one if it was computed the other way round."""
    found = contrasts[frozenset((first, second))]
    return found if found.first == first else found.reversed()


def contrasts_to_frame(contrasts: ContrastSet) -> pd.DataFrame:
    return pd.DataFrame([c.as_dict() for c in contrasts.values()])


@dataclass(frozen=True)
class EstimateReport:
    metric: str
    score_column: str
    overall: Estimate
    mode: str
    equity_group: Optional[str] = None
    group_order: Tuple = ()
    group_estimates: Mapping[Any, Estimate] = field(default_factory=lambda: MappingProxyType({}))
    contrasts: ContrastSet = field(default_factory=lambda: MappingProxyType({}))
    missing_count: int = 0
    excluded_rows: int = 0
    findings: Tuple[Finding, ...] = ()
    # Cluster and residual variance of the random-intercept fit; empty for OLS
    variance_components: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def warnings(self) -> Tuple[Finding, ...]:
        return tuple(f for f in self.findings if not f.is_error)

    def contrast(self, first, second) -> Contrast:
        return lookup_contrast(self.contrasts, first, second)

    def to_frame(self) -> pd.DataFrame:
        """Overall estimate followed by one row per group."""
        rows = [self.overall.as_dict()]
        rows.extend(self.group_estimates[g].as_dict() for g in self.group_order)
        return pd.DataFrame(rows)

    def contrasts_frame(self) -> pd.DataFrame:
        return contrasts_to_frame(self.contrasts)


@dataclass(frozen=True)
class GrowthReport:
    metric: str
    score_column: str
    timepoint1: Estimate
    timepoint2: Estimate
    growth: Estimate
    mode: str
    equity_group: Optional[str] = None
    group_order: Tuple = ()
    group_timepoint1: Mapping[Any, Estimate] = field(default_factory=lambda: MappingProxyType({}))
    group_timepoint2: Mapping[Any, Estimate] = field(default_factory=lambda: MappingProxyType({}))
    group_growth: Mapping[Any, Estimate] = field(default_factory=lambda: MappingProxyType({}))
    contrasts_timepoint1: ContrastSet = field(default_factory=lambda: MappingProxyType({}))
    contrasts_timepoint2: ContrastSet = field(default_factory=lambda: MappingProxyType({}))
    difference_in_differences: ContrastSet = field(default_factory=lambda: MappingProxyType({}))
    missing_counts: Tuple[int, int] = (0, 0)
    findings: Tuple[Finding, ...] = ()
    variance_components: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def warnings(self) -> Tuple[Finding, ...]:
        return tuple(f for f in self.findings if not f.is_error)

    def change_in_difference(self, first, second) -> Contrast:
        """(first at t2 - first at t1) - (second at t2 - second at t1)"""
        return lookup_contrast(self.difference_in_differences, first, second)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for timepoint, est in (("1", self.timepoint1), ("2", self.timepoint2), ("growth", self.growth)):
            rows.append({"timepoint": timepoint, "group": None, **est.as_dict()})
        for g in self.group_order:
            for timepoint, table in (("1", self.group_timepoint1), ("2", self.group_timepoint2), ("growth", self.group_growth)):
                rows.append({"timepoint": timepoint, "group": g, **table[g].as_dict()})
        return pd.DataFrame(rows)

    def contrasts_frame(self) -> pd.DataFrame:
        frames = []
        for timepoint, contrasts in (
            ("1", self.contrasts_timepoint1),
            ("2", self.contrasts_timepoint2),
            ("change", self.difference_in_differences),
        ):
            if contrasts:
                frames.append(contrasts_to_frame(contrasts).assign(timepoint=timepoint))
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)
