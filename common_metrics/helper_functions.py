"""
Shared constants and small helpers used across scoring and estimation
"""

from typing import List, Optional, Sequence

import pandas as pd

from .config import get_settings

# ---------------------------------------------------------------------
# Column conventions
# ---------------------------------------------------------------------
TIMEPOINT_COL = "timepoint"
CLUSTERED = "clustered"
UNCLUSTERED = "unclustered"

# ---------------------------------------------------------------------
# IPG Definitions
# ---------------------------------------------------------------------
KINDERGARTEN_LABELS = {"K", "KINDERGARTEN"}


def score_column(metric_name: str, prefix: Optional[str] = None) -> str:
    """Composite column name for a metric, e.g. 'cm_engagement'."""
    return f"{prefix or get_settings().score_prefix}_{metric_name}"


def clean_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """
    Clean column names: strip, lowercase, replace spaces with underscores

    Args:
        df: Input DataFrame (modified in place and returned)

    Returns:
        DataFrame with cleaned column names
    """
    df.columns = (
        df.columns.astype(str)
        .str.strip()
        .str.lower()
        .str.replace(" ", "_")
        .str.replace("[^a-z0-9_]", "", regex=True)
    )
    return df


def normalize_grade(grade_val):
    """
    Grade label to an int, handling "K" / "Kindergarten" as 0.

    Transitional kindergarten ("TK") is not grade K and, like non-integral
    grades such as "5.5", gives None.
    """
    if grade_val is None or pd.isna(grade_val):
        return None
    grade_str = str(grade_val).strip().upper()
    if grade_str in KINDERGARTEN_LABELS:
        return 0
    try:
        grade = float(grade_str)
    except ValueError:
        return None
    if not grade.is_integer():
        return None
    return int(grade)


def is_numeric_value(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def group_levels(values: pd.Series, group_order: Optional[Sequence] = None) -> List:
    """
    Ordered distinct non-missing values of a grouping column.

    Precedence: explicit group_order > ordered Categorical categories >
    first appearance in the data. Values in group_order that never occur are
    dropped; observed values missing from group_order are appended in order of
    first appearance.
    """
    observed = list(pd.unique(values.dropna()))
    if group_order is not None:
        declared = [g for g in group_order if g in set(observed)]
        return declared + [g for g in observed if g not in set(declared)]
    if isinstance(values.dtype, pd.CategoricalDtype) and values.dtype.ordered:
        present = set(observed)
        return [c for c in values.dtype.categories if c in present]
    return observed
