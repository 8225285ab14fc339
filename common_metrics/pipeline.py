"""
Entry points: score a metric, estimate its mean, estimate its growth.

Each call runs validation -> scoring -> estimation in order on its own copy
of the data. Warning findings are returned on the report and also raised
through the `warnings` module so interactive users see them.
"""

import concurrent.futures
import logging
import warnings
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pandas as pd

from .errors import Finding, warning_category
from .estimation.growth_estimator import estimate_growth
from .estimation.mean_estimator import estimate_mean
from .estimation.reports import EstimateReport, GrowthReport
from .metrics.metric_catalog import get_metric
from .metrics.metric_scoring import ScoredDataset, score
from .metrics.metric_validation import validate

logger = logging.getLogger(__name__)


def _emit(findings: Iterable[Finding]) -> None:
    for finding in findings:
        if finding.is_error:
            continue
        logger.warning(f"[Metrics] {finding.message}")
        warnings.warn(finding.message, warning_category(finding), stacklevel=3)


def score_metric(data: pd.DataFrame, metric_name: str, scale_usage_warning: bool = True) -> ScoredDataset:
    """Validate and score without emitting warnings; findings are kept on the result."""
    metric = get_metric(metric_name)
    result = validate(data, metric, scale_usage_warning=scale_usage_warning)
    result.raise_for_errors()
    scored, _ = score(data, metric)
    scored.findings = result.warnings
    return scored


def make_metric(data: pd.DataFrame, metric_name: str, scale_usage_warning: bool = True) -> Tuple[pd.DataFrame, int]:
    """
    Append the composite score column (e.g. 'cm_engagement') to a copy of `data`

    Args:
        data: One row per respondent/observation with the metric's item columns
        metric_name: Catalog name, e.g. "engagement"
        scale_usage_warning: Warn when an item never uses part of its scale

    Returns:
        (scored DataFrame, number of rows with a missing composite)

    Raises:
        UnknownMetricError: metric_name is not in the catalog
        MetricValidationError: missing columns, non-numeric items or out-of-range values
    """
    scored = score_metric(data, metric_name, scale_usage_warning)
    _emit(scored.findings)
    if scored.missing_count:
        logger.warning(
            f"[Metrics] {scored.missing_count:,} row(s) have a missing {scored.score_column} "
            f"because of missing item data"
        )
    return scored.data, scored.missing_count


def metric_mean(
    data: pd.DataFrame,
    metric_name: str,
    by_class: bool = False,
    equity_group: Optional[str] = None,
    scale_usage_warning: bool = True,
    group_order: Optional[Sequence] = None,
) -> EstimateReport:
    """
    Mean composite score, clustered by class when `by_class` is True, and
    optionally by equity group with all pairwise contrasts.
    """
    scored = score_metric(data, metric_name, scale_usage_warning)
    report = estimate_mean(scored, cluster_enabled=by_class, equity_group=equity_group, group_order=group_order)
    _emit(report.findings)
    return report


def metric_growth(
    data1: pd.DataFrame,
    data2: pd.DataFrame,
    metric_name: str,
    by_class: bool = False,
    equity_group: Optional[str] = None,
    scale_usage_warning: bool = True,
    group_order: Optional[Sequence] = None,
) -> GrowthReport:
    """
    Growth in the composite score from `data1` (timepoint 1) to `data2`
    (timepoint 2), optionally by equity group with the change in differences.
    """
    scored1 = score_metric(data1, metric_name, scale_usage_warning)
    scored2 = score_metric(data2, metric_name, scale_usage_warning)
    report = estimate_growth(
        scored1, scored2, equity_group=equity_group, cluster_enabled=by_class, group_order=group_order
    )
    _emit(report.findings)
    return report


def score_many(
    data: pd.DataFrame,
    metric_names: Sequence[str],
    scale_usage_warning: bool = True,
    max_workers: Optional[int] = None,
) -> Dict[str, Tuple[pd.DataFrame, int]]:
    """
    Score several metrics on the same data concurrently.

    Every metric is attempted; if any failed, the first failure (in the order
    of `metric_names`) is raised after all have finished.
    """
    names = list(dict.fromkeys(metric_names))
    if not names:
        return {}
    max_workers = max_workers or min(4, len(names))
    logger.info(f"[Metrics] Scoring {len(names)} metric(s) with max_workers={max_workers}")

    results: Dict[str, ScoredDataset] = {}
    failures: Dict[str, Exception] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_name = {executor.submit(score_metric, data, name, scale_usage_warning): name for name in names}
        for future in concurrent.futures.as_completed(future_to_name):
            name = future_to_name[future]
            try:
                results[name] = future.result()
            except Exception as e:
                logger.error(f"[Metrics] Scoring {name} failed: {e}")
                failures[name] = e

    for name in names:
        if name in failures:
            raise failures[name]

    for name in names:
        _emit(results[name].findings)
    return {name: (results[name].data, results[name].missing_count) for name in names}

