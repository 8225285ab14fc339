"""
Metric data loading and normalization utilities
"""

import logging

import pandas as pd

from . import helper_functions as hf

logger = logging.getLogger(__name__)


def normalize_metric_dataframe(df: pd.DataFrame) -> pd.DataFrame:
    """Normalize column names and trim whitespace in text columns. Returns a copy."""
    base = hf.clean_column_names(df.copy())

    duplicated = base.columns[base.columns.duplicated()].tolist()
    if duplicated:
        raise ValueError(f"Column names collide after normalization: {sorted(set(duplicated))}")

    for col in base.columns:
        if pd.api.types.is_object_dtype(base[col]) or pd.api.types.is_string_dtype(base[col]):
            stripped = base[col].map(lambda v: v.strip() if isinstance(v, str) else v)
            base[col] = stripped.mask(stripped.eq("").fillna(False).astype(bool))
    return base


def load_metric_data(metric_data) -> pd.DataFrame:
    """
    Build a normalized DataFrame from in-memory data

    Args:
        metric_data: List of dicts or DataFrame, one row per respondent/observation

    Returns:
        Normalized DataFrame (lower-case column names, blank strings as missing)
    """
    if isinstance(metric_data, list):
        base = pd.DataFrame(metric_data)
    elif isinstance(metric_data, pd.DataFrame):
        base = metric_data
    else:
        raise ValueError(f"metric_data must be list of dicts or DataFrame, got {type(metric_data)}")

    base = normalize_metric_dataframe(base)
    logger.info(f"[Data Loading] Metric data loaded: {base.shape[0]:,} rows, {base.shape[1]} columns")
    return base
