"""
Data validation for common metrics.

Checks run in a fixed order and stop after the first check class that finds
an error. Every problem inside that class is reported at once, so a user
fixing their data sees all missing columns (or all out-of-range values) in a
single pass.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from .. import helper_functions as hf
from ..config import get_settings
from ..errors import Finding, MetricValidationError, Severity, warning_finding
from .metric_catalog import MetricDefinition

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    metric: str
    findings: List[Finding] = field(default_factory=list)

    @property
    def errors(self) -> List[Finding]:
        return [f for f in self.findings if f.is_error]

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if not f.is_error]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise MetricValidationError(self.metric, self.errors)


def _format_domain(domain) -> str:
    return "{" + ", ".join(str(v) for v in domain) + "}"


def check_columns(data: pd.DataFrame, metric: MetricDefinition, extra_columns=()) -> List[Finding]:
    required = list(metric.required_columns) + [c for c in extra_columns if c not in metric.required_columns]
    missing = [c for c in required if c not in data.columns]
    if not missing:
        return []
    return [
        Finding(
            check="column_presence",
            severity=Severity.ERROR,
            message=f"Missing required column(s) for {metric.name}: {', '.join(missing)}",
            columns=tuple(missing),
        )
    ]


def check_numeric(data: pd.DataFrame, metric: MetricDefinition) -> List[Finding]:
    offending = []
    for item in metric.items:
        col = data[item]
        if pd.api.types.is_bool_dtype(col):
            offending.append(item)
            continue
        if pd.api.types.is_numeric_dtype(col):
            continue
        present = col.dropna()
        if not present.map(hf.is_numeric_value).all():
            offending.append(item)
    if not offending:
        return []
    return [
        Finding(
            check="numeric_type",
            severity=Severity.ERROR,
            message=f"Column(s) must hold numeric values: {', '.join(offending)}",
            columns=tuple(offending),
        )
    ]


def check_domains(data: pd.DataFrame, metric: MetricDefinition) -> List[Finding]:
    findings = []
    for item in metric.items:
        domain = metric.domain(item)
        values = pd.to_numeric(data[item], errors="coerce").dropna()
        bad = sorted(set(values[~values.isin(domain)].tolist()))
        if bad:
            shown = [int(v) if float(v).is_integer() else v for v in bad]
            findings.append(
                Finding(
                    check="domain",
                    severity=Severity.ERROR,
                    message=(
                        f"Column '{item}' has values outside its valid domain {_format_domain(domain)}: "
                        f"{', '.join(str(v) for v in shown)}"
                    ),
                    columns=(item,),
                    values=tuple(shown),
                )
            )
    return findings


def check_scale_usage(data: pd.DataFrame, metric: MetricDefinition) -> List[Finding]:
    findings = []
    for item in metric.items:
        domain = metric.domain(item)
        observed = set(pd.to_numeric(data[item], errors="coerce").dropna().tolist())
        unused = [v for v in domain if v not in observed]
        if unused:
            findings.append(
                warning_finding(
                    "scale_usage",
                    f"Column '{item}' never uses value(s) {', '.join(str(v) for v in unused)} "
                    f"of its scale {_format_domain(domain)}. Check that the data is coded correctly.",
                    columns=(item,),
                    values=unused,
                )
            )
    return findings


def validate(
    data: pd.DataFrame,
    metric: MetricDefinition,
    scale_usage_warning: bool = True,
    require_cluster: bool = False,
    cluster_column: Optional[str] = None,
) -> ValidationResult:
    """
    Validate `data` against a metric definition. The frame is not modified.

    Args:
        data: Respondent-level data
        metric: Definition to validate against
        scale_usage_warning: Whether to warn about unused scale values
        require_cluster: Treat the cluster column as a required column
        cluster_column: Cluster column name (defaults to settings)

    Returns:
        ValidationResult with every finding of the first failing error class,
        or all scale-usage warnings when no error was found
    """
    result = ValidationResult(metric=metric.name)
    extra = []
    if require_cluster:
        extra.append(cluster_column or get_settings().cluster_column)

    for check in (
        lambda: check_columns(data, metric, extra),
        lambda: check_numeric(data, metric),
        lambda: check_domains(data, metric),
    ):
        found = check()
        if found:
            result.findings.extend(found)
            for f in found:
                logger.info(f"[Validation] {metric.name}: {f.message}")
            return result

    if scale_usage_warning:
        result.findings.extend(check_scale_usage(data, metric))

    return result
