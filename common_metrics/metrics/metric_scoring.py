"""
Composite score calculation
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .. import helper_functions as hf
from ..errors import Finding
from .metric_catalog import ConditionalSum, MetricDefinition, RescaledSum, ScoringRule, SimpleSum
from .metric_validation import validate

logger = logging.getLogger(__name__)


@dataclass
class ScoredDataset:
    """Copy of the input data with the composite column appended."""

    data: pd.DataFrame
    metric: MetricDefinition
    score_column: str
    missing_count: int
    findings: List[Finding] = field(default_factory=list)

    @property
    def scores(self) -> pd.Series:
        return self.data[self.score_column]


# ---------------------------------------------------------------------
# Scoring rules
# ---------------------------------------------------------------------
def rescale(values: pd.Series, domain: Sequence[int], target: Tuple[int, int]) -> pd.Series:
    """Affine map from [min(domain), max(domain)] onto [target[0], target[1]]."""
    low, high = min(domain), max(domain)
    t_low, t_high = target
    return t_low + (values - low) * (t_high - t_low) / (high - low)


def _item_frame(data: pd.DataFrame, metric: MetricDefinition, items: Iterable[str], rule: ScoringRule) -> pd.DataFrame:
    frame = data[list(items)].apply(pd.to_numeric, errors="coerce").astype(float)
    if isinstance(rule, RescaledSum):
        for item in frame.columns:
            frame[item] = rescale(frame[item], metric.domain(item), rule.target)
    return frame


def _sum_items(data: pd.DataFrame, metric: MetricDefinition, items: Sequence[str], rule: ScoringRule) -> pd.Series:
    """Row sums, missing wherever any item is missing."""
    frame = _item_frame(data, metric, items, rule)
    return frame.sum(axis=1, min_count=len(frame.columns))


def _matches(values: pd.Series, allowed) -> pd.Series:
    allowed_grades = {hf.normalize_grade(a) for a in allowed} - {None}
    allowed_labels = {str(a).strip().casefold() for a in allowed}

    def _match(v) -> bool:
        if v is None or pd.isna(v):
            return False
        grade = hf.normalize_grade(v)
        if grade is not None and grade in allowed_grades:
            return True
        return str(v).strip().casefold() in allowed_labels

    return values.map(_match).astype(bool)


def condition_mask(data: pd.DataFrame, rule: ConditionalSum) -> pd.Series:
    """Rows where every discriminant holds an allowed value. Missing discriminants never match."""
    mask = pd.Series(True, index=data.index)
    for column, allowed in rule.conditions:
        mask &= _matches(data[column], allowed)
    return mask


def compute_composite(data: pd.DataFrame, metric: MetricDefinition) -> pd.Series:
    rule = metric.scoring
    if isinstance(rule, (SimpleSum, RescaledSum)):
        return _sum_items(data, metric, metric.items, rule)
    if isinstance(rule, ConditionalSum):
        composite = _sum_items(data, metric, metric.default_items, rule.base)
        extra = _sum_items(data, metric, rule.conditional_items, rule.base)
        mask = condition_mask(data, rule)
        return composite + extra.where(mask, 0.0)
    raise TypeError(f"Unsupported scoring rule for {metric.name}: {rule!r}")


def score(
    data: pd.DataFrame,
    metric: MetricDefinition,
    prefix: Optional[str] = None,
) -> Tuple[ScoredDataset, int]:
    """
    Append the metric's composite column to a copy of `data`.

    Fatal validation checks always run first; a dataset that fails them is
    never scored.

    Returns:
        (ScoredDataset, number of rows whose composite is missing)
    """
    validate(data, metric, scale_usage_warning=False).raise_for_errors()

    column = hf.score_column(metric.name, prefix)
    scored = data.copy()
    scored[column] = compute_composite(data, metric)
    missing_count = int(scored[column].isna().sum())

    if missing_count:
        logger.info(
            f"[Scoring] {metric.name}: {missing_count:,} of {len(scored):,} rows have a missing "
            f"composite because of missing item data"
        )
    return ScoredDataset(data=scored, metric=metric, score_column=column, missing_count=missing_count), missing_count
