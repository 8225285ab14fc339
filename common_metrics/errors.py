"""
Exceptions, warning categories and validation findings
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Finding:
    """
    One validation or estimation finding.

    Args:
        check: Name of the check that produced it (e.g. "column_presence")
        severity: Severity.ERROR blocks scoring, Severity.WARNING never does
        message: Human-readable description
        columns: Columns the finding is about
        values: Offending or unused values, when they can be enumerated
    """

    check: str
    severity: Severity
    message: str
    columns: Tuple[str, ...] = field(default_factory=tuple)
    values: Tuple = field(default_factory=tuple)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.check}: {self.message}"


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------
class CommonMetricsError(Exception):
    """Base class for every fatal error raised by the package."""


class UnknownMetricError(CommonMetricsError, KeyError):
    def __init__(self, name: str, available: Iterable[str]):
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"Unknown metric '{name}'. Available metrics: {', '.join(self.available)}"
        )

    def __str__(self) -> str:
        return self.args[0]


class CatalogError(CommonMetricsError):
    """A metric catalog entry is malformed."""


class MetricValidationError(CommonMetricsError):
    """Raised when a dataset fails one of the fatal validation checks."""

    def __init__(self, metric: str, findings: List[Finding]):
        self.metric = metric
        self.findings = list(findings)
        lines = "\n".join(f"  - {f.message}" for f in self.findings)
        super().__init__(f"Data failed validation for metric '{metric}':\n{lines}")


class MetricMismatchError(CommonMetricsError):
    """Two scored datasets were produced from different metric definitions."""


class GroupMismatchError(CommonMetricsError):
    """Equity group labels differ between the two growth timepoints."""

    def __init__(self, column: str, only_first: Iterable, only_second: Iterable):
        self.column = column
        self.only_first = sorted(map(str, only_first))
        self.only_second = sorted(map(str, only_second))
        super().__init__(
            f"Equity group '{column}' has different values at each timepoint. "
            f"Only at timepoint 1: {self.only_first or 'none'}; "
            f"only at timepoint 2: {self.only_second or 'none'}"
        )


class ModelConvergenceError(CommonMetricsError):
    """The model fit did not converge or produced a singular fit."""


class InsufficientDataError(CommonMetricsError):
    """Too few usable rows to fit a model."""


# ---------------------------------------------------------------------
# Warning categories
# ---------------------------------------------------------------------
class MetricWarning(UserWarning):
    pass


class ScaleUsageWarning(MetricWarning):
    pass


class ClusteringWarning(MetricWarning):
    pass


class ExcessiveGroupsWarning(MetricWarning):
    pass


WARNING_CATEGORIES = {
    "scale_usage": ScaleUsageWarning,
    "clustering": ClusteringWarning,
    "equity_group_size": ExcessiveGroupsWarning,
}


def warning_category(finding: Finding) -> type:
    return WARNING_CATEGORIES.get(finding.check, MetricWarning)


def warning_finding(check: str, message: str, columns: Optional[Iterable[str]] = None, values: Optional[Iterable] = None) -> Finding:
    return Finding(
        check=check,
        severity=Severity.WARNING,
        message=message,
        columns=tuple(columns or ()),
        values=tuple(values or ()),
    )
