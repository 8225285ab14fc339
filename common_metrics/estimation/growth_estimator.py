"""
Growth between two timepoints, optionally by equity group.

Both timepoints are stacked into one frame with a `timepoint` indicator and
fit as a single model (timepoint cell means, or timepoint x group cell means),
so growth and the difference in differences get standard errors from one
covariance matrix. Cluster ids are used as given: a class observed at both
timepoints shares one random intercept, while each row stays its own residual.
"""

import logging
from types import MappingProxyType
from typing import Optional, Sequence

import pandas as pd

from .. import helper_functions as hf
from ..config import get_settings
from ..errors import GroupMismatchError, InsufficientDataError, MetricMismatchError
from ..metrics.metric_scoring import ScoredDataset
from .mean_estimator import check_group_size, fit_cells, merge_findings, pairwise, require_column
from .reports import GrowthReport, make_contrast, make_estimate

logger = logging.getLogger(__name__)

TIMEPOINTS = (1, 2)


def check_same_metric(scored1: ScoredDataset, scored2: ScoredDataset) -> None:
    if scored1.metric != scored2.metric or scored1.score_column != scored2.score_column:
        raise MetricMismatchError(
            f"Growth needs both datasets scored with the same metric, got "
            f"'{scored1.metric.name}' ({scored1.score_column}) and "
            f"'{scored2.metric.name}' ({scored2.score_column})"
        )


def check_group_labels(data1: pd.DataFrame, data2: pd.DataFrame, metric: str, equity_group: str) -> None:
    """Raise GroupMismatchError unless both timepoints observe exactly the same group values."""
    require_column(data1, metric, equity_group, "Equity group (timepoint 1)")
    require_column(data2, metric, equity_group, "Equity group (timepoint 2)")
    labels1 = set(data1[equity_group].dropna().unique())
    labels2 = set(data2[equity_group].dropna().unique())
    if labels1 != labels2:
        raise GroupMismatchError(equity_group, labels1 - labels2, labels2 - labels1)


def coefficient(model, index: dict, key: tuple, what: str):
    if key not in index:
        raise InsufficientDataError(f"No scored rows for {what}")
    return model.unit(index[key])


def stack_timepoints(scored1: ScoredDataset, scored2: ScoredDataset) -> pd.DataFrame:
    frames = [s.data.assign(**{hf.TIMEPOINT_COL: t}) for s, t in zip((scored1, scored2), TIMEPOINTS)]
    return pd.concat(frames, ignore_index=True)


def estimate_growth(
    scored1: ScoredDataset,
    scored2: ScoredDataset,
    equity_group: Optional[str] = None,
    cluster_enabled: bool = False,
    cluster_column: Optional[str] = None,
    group_order: Optional[Sequence] = None,
    confidence: Optional[float] = None,
) -> GrowthReport:
    """
    Estimates at each timepoint, growth (timepoint 2 - timepoint 1) and, with an
    equity group, per-group growth, between-group contrasts at each timepoint
    and the change in those differences.

    Raises:
        MetricMismatchError: the datasets were scored with different metrics
        GroupMismatchError: equity group values differ between timepoints
    """
    settings = get_settings()
    cluster_column = cluster_column or settings.cluster_column
    confidence = confidence or settings.confidence
    check_same_metric(scored1, scored2)
    metric = scored1.metric
    score_col = scored1.score_column

    if equity_group is not None:
        check_group_labels(scored1.data, scored2.data, metric.name, equity_group)

    stacked = stack_timepoints(scored1, scored2)
    stacked = stacked[stacked[score_col].notna()]

    time_model, time_index, _, time_findings, time_rows = fit_cells(
        stacked, score_col, {hf.TIMEPOINT_COL: TIMEPOINTS}, metric, cluster_enabled, cluster_column
    )

    def _n(frame: pd.DataFrame, mask) -> tuple:
        sub = frame[mask]
        n_clusters = sub[cluster_column].nunique() if time_model.mode == hf.CLUSTERED else None
        return len(sub), n_clusters

    t1 = coefficient(time_model, time_index, (1,), "timepoint 1")
    t2 = coefficient(time_model, time_index, (2,), "timepoint 2")
    timepoint1 = make_estimate("Timepoint 1", time_model.combine(t1), time_model.mode, confidence,
                               *_n(time_rows, time_rows[hf.TIMEPOINT_COL] == 1))
    timepoint2 = make_estimate("Timepoint 2", time_model.combine(t2), time_model.mode, confidence,
                               *_n(time_rows, time_rows[hf.TIMEPOINT_COL] == 2))
    growth = make_estimate("Growth", time_model.combine(t2 - t1), time_model.mode, confidence,
                           time_model.n_obs, time_model.n_clusters)
    logger.info(
        f"[Growth] {metric.name}: {timepoint1.estimate:.3f} -> {timepoint2.estimate:.3f} "
        f"(growth {growth.estimate:+.3f}, SE {growth.std_error:.3f}, {growth.mode})"
    )

    common = dict(
        metric=metric.name,
        score_column=score_col,
        timepoint1=timepoint1,
        timepoint2=timepoint2,
        growth=growth,
        missing_counts=(scored1.missing_count, scored2.missing_count),
    )
    if equity_group is None:
        return GrowthReport(
            mode=time_model.mode,
            findings=merge_findings(scored1.findings, scored2.findings, time_findings),
            variance_components=MappingProxyType(time_model.variance_components),
            **common,
        )

    group_rows = stacked[stacked[equity_group].notna()]
    size_findings = check_group_size(
        equity_group, hf.group_levels(group_rows[equity_group], group_order), settings.max_equity_groups
    )
    model, index, levels, group_findings, used = fit_cells(
        group_rows, score_col, {hf.TIMEPOINT_COL: TIMEPOINTS, equity_group: group_order},
        metric, cluster_enabled, cluster_column,
    )
    levels = levels[equity_group]

    def cell(timepoint, level):
        return coefficient(model, index, (timepoint, level), f"group '{level}' at timepoint {timepoint}")

    by_time = {1: {}, 2: {}}
    group_growth = {}
    for level in levels:
        in_group = used[equity_group] == level
        for timepoint in TIMEPOINTS:
            in_cell = in_group & (used[hf.TIMEPOINT_COL] == timepoint)
            by_time[timepoint][level] = make_estimate(
                f"{level} (timepoint {timepoint})", model.combine(cell(timepoint, level)), model.mode,
                confidence, *_n(used, in_cell),
            )
        group_growth[level] = make_estimate(
            f"{level} (growth)", model.combine(cell(2, level) - cell(1, level)), model.mode,
            confidence, *_n(used, in_group),
        )

    contrasts = {1: {}, 2: {}}
    did = {}
    for first, second in pairwise(levels):
        key = frozenset((first, second))
        for timepoint in TIMEPOINTS:
            L = cell(timepoint, first) - cell(timepoint, second)
            contrasts[timepoint][key] = make_contrast(first, second, model.combine(L), model.mode, confidence)
        L = (cell(2, first) - cell(1, first)) - (cell(2, second) - cell(1, second))
        did[key] = make_contrast(first, second, model.combine(L), model.mode, confidence)

    return GrowthReport(
        mode=model.mode,
        equity_group=equity_group,
        group_order=tuple(levels),
        group_timepoint1=MappingProxyType(by_time[1]),
        group_timepoint2=MappingProxyType(by_time[2]),
        group_growth=MappingProxyType(group_growth),
        contrasts_timepoint1=MappingProxyType(contrasts[1]),
        contrasts_timepoint2=MappingProxyType(contrasts[2]),
        difference_in_differences=MappingProxyType(did),
        findings=merge_findings(scored1.findings, scored2.findings, time_findings, group_findings, size_findings),
        variance_components=MappingProxyType(model.variance_components),
        **common,
    )
