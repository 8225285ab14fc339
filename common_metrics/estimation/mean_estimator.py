"""
Mean and between-group contrast estimation for a scored metric
"""

import itertools
import logging
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .. import helper_functions as hf
from ..config import get_settings
from ..errors import Finding, MetricValidationError, Severity, warning_finding
from ..metrics.metric_catalog import MetricDefinition
from ..metrics.metric_scoring import ScoredDataset
from .model_fit import FittedModel, cell_design, fit_linear_model
from .reports import EstimateReport, make_contrast, make_estimate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# Shared helpers (also used by the growth estimator)
# ---------------------------------------------------------------------
def require_column(data: pd.DataFrame, metric: str, column: str, role: str) -> None:
    if column not in data.columns:
        raise MetricValidationError(
            metric,
            [
                Finding(
                    check="column_presence",
                    severity=Severity.ERROR,
                    message=f"{role} column '{column}' is not in the data",
                    columns=(column,),
                )
            ],
        )


def resolve_clustering(
    frame: pd.DataFrame, metric: MetricDefinition, cluster_enabled: bool, cluster_column: str
) -> Tuple[Optional[pd.Series], List[Finding]]:
    """
    Decide whether to fit with a random intercept.

    Metrics that are not collected per class are always fit without clustering.

    Returns:
        (cluster ids or None, findings). Rows with a missing cluster id are left
        out of the returned ids; callers keep the rows where `ids` is not null.
    """
    if not metric.requires_cluster_id:
        if cluster_enabled:
            logger.info(f"[Estimation] {metric.name} does not expect clustering; fitting without '{cluster_column}'")
        return None, []

    reason = None
    if not cluster_enabled:
        reason = "clustering was not requested (by_class=False)"
    elif cluster_column not in frame.columns:
        reason = f"no '{cluster_column}' column was supplied"
    else:
        ids = frame[cluster_column]
        n_clusters = ids.dropna().nunique()
        if n_clusters > 1:
            dropped = int(ids.isna().sum())
            if dropped:
                logger.info(f"[Estimation] Dropping {dropped:,} row(s) with a missing '{cluster_column}'")
            return ids, []
        reason = f"'{cluster_column}' has {n_clusters} distinct value(s)"

    finding = warning_finding(
        "clustering",
        f"{metric.name} is usually collected from several respondents per class, but the "
        f"estimate ignores clustering because {reason}. Standard errors may be understated.",
        columns=(cluster_column,),
    )
    return None, [finding]


def check_group_size(column: str, levels: Sequence, max_groups: int) -> List[Finding]:
    if len(levels) <= max_groups:
        return []
    return [
        warning_finding(
            "equity_group_size",
            f"Equity group '{column}' has {len(levels)} distinct values (more than {max_groups}). "
            f"Results are computed for every pair but may be hard to interpret.",
            columns=(column,),
            values=levels,
        )
    ]


def merge_findings(*groups: Sequence[Finding]) -> Tuple[Finding, ...]:
    seen = set()
    merged = []
    for finding in itertools.chain(*groups):
        key = (finding.check, finding.message)
        if key not in seen:
            seen.add(key)
            merged.append(finding)
    return tuple(merged)


def fit_cells(
    frame: pd.DataFrame,
    score_col: str,
    factors: Dict[str, Optional[Sequence]],
    metric: MetricDefinition,
    cluster_enabled: bool,
    cluster_column: str,
) -> Tuple[FittedModel, Dict[tuple, int], Dict[str, list], List[Finding], pd.DataFrame]:
    """
    Fit a cell-means model on `frame`, whose score and factor columns must be complete.

    Args:
        factors: factor column -> explicit level order (or None for the default order)

    Returns:
        (model, cell -> coefficient index, factor -> levels used, findings, rows used)
    """
    groups, findings = resolve_clustering(frame, metric, cluster_enabled, cluster_column)
    if groups is not None:
        keep = groups.notna().to_numpy()
        frame = frame[keep]
        groups = groups[keep].astype(str)
    levels = {col: hf.group_levels(frame[col], order) for col, order in factors.items()}
    X, cells = cell_design(frame, levels)
    model = fit_linear_model(frame[score_col], X, groups=groups)
    return model, {cell: i for i, cell in enumerate(cells)}, levels, findings, frame


def pairwise(levels: Sequence) -> List[Tuple]:
    """Unordered pairs, each oriented so the earlier level comes first."""
    return list(itertools.combinations(levels, 2))


# ---------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------
def estimate_mean(
    scored: ScoredDataset,
    cluster_enabled: bool = False,
    equity_group: Optional[str] = None,
    cluster_column: Optional[str] = None,
    group_order: Optional[Sequence] = None,
    confidence: Optional[float] = None,
) -> EstimateReport:
    """
    Overall mean of the composite score, optionally by equity group.

    Args:
        scored: Output of the scorer
        cluster_enabled: Fit a random intercept per cluster when possible
        equity_group: Column to split estimates by
        cluster_column: Cluster id column (defaults to settings, 'class_id')
        group_order: Explicit level order; contrasts are earlier level minus later level
        confidence: Confidence level for the intervals

    Returns:
        EstimateReport with the overall estimate, per-group estimates and one
        contrast per unordered pair of groups
    """
    settings = get_settings()
    cluster_column = cluster_column or settings.cluster_column
    confidence = confidence or settings.confidence
    metric = scored.metric
    score_col = scored.score_column
    data = scored.data

    scored_rows = data[data[score_col].notna()]
    overall_model, _, _, overall_findings, overall_rows = fit_cells(
        scored_rows, score_col, {}, metric, cluster_enabled, cluster_column
    )
    overall = make_estimate(
        "Overall", overall_model.combine([1.0]), overall_model.mode, confidence,
        overall_model.n_obs, overall_model.n_clusters,
    )
    logger.info(
        f"[Estimation] {metric.name} overall mean {overall.estimate:.3f} "
        f"(SE {overall.std_error:.3f}, {overall.mode}, n={overall.n_obs:,})"
    )

    if equity_group is None:
        return EstimateReport(
            metric=metric.name,
            score_column=score_col,
            overall=overall,
            mode=overall.mode,
            missing_count=scored.missing_count,
            excluded_rows=len(scored_rows) - len(overall_rows),
            findings=merge_findings(scored.findings, overall_findings),
            variance_components=MappingProxyType(overall_model.variance_components),
        )

    require_column(data, metric.name, equity_group, "Equity group")
    group_rows = scored_rows[scored_rows[equity_group].notna()]
    size_findings = check_group_size(
        equity_group, hf.group_levels(group_rows[equity_group], group_order), settings.max_equity_groups
    )

    model, index, levels, group_findings, used = fit_cells(
        group_rows, score_col, {equity_group: group_order}, metric, cluster_enabled, cluster_column
    )
    levels = levels[equity_group]

    group_estimates = {}
    for level in levels:
        in_group = used[used[equity_group] == level]
        n_clusters = in_group[cluster_column].nunique() if model.mode == hf.CLUSTERED else None
        group_estimates[level] = make_estimate(
            str(level), model.combine(model.unit(index[(level,)])), model.mode, confidence,
            len(in_group), n_clusters,
        )

    contrasts = {}
    for first, second in pairwise(levels):
        L = model.unit(index[(first,)]) - model.unit(index[(second,)])
        contrasts[frozenset((first, second))] = make_contrast(first, second, model.combine(L), model.mode, confidence)

    return EstimateReport(
        metric=metric.name,
        score_column=score_col,
        overall=overall,
        mode=model.mode,
        equity_group=equity_group,
        group_order=tuple(levels),
        group_estimates=MappingProxyType(group_estimates),
        contrasts=MappingProxyType(contrasts),
        missing_count=scored.missing_count,
        excluded_rows=len(scored_rows) - len(used),
        findings=merge_findings(scored.findings, overall_findings, group_findings, size_findings),
        variance_components=MappingProxyType(model.variance_components),
    )
