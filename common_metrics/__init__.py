"""
Common metric scoring and clustered estimation
"""
from .config import configure_logging, get_settings
from .data_loading import load_metric_data
from .errors import (
    ClusteringWarning,
    CommonMetricsError,
    ExcessiveGroupsWarning,
    GroupMismatchError,
    InsufficientDataError,
    MetricMismatchError,
    MetricValidationError,
    MetricWarning,
    ModelConvergenceError,
    ScaleUsageWarning,
    UnknownMetricError,
)
from .estimation import Contrast, Estimate, EstimateReport, GrowthReport, estimate_growth, estimate_mean
from .metrics import MetricDefinition, get_metric, list_metrics, score, validate
from .pipeline import make_metric, metric_growth, metric_mean, score_many, score_metric

__all__ = [
    'configure_logging',
    'get_settings',
    'load_metric_data',
    'ClusteringWarning',
    'CommonMetricsError',
    'ExcessiveGroupsWarning',
    'GroupMismatchError',
    'InsufficientDataError',
    'MetricMismatchError',
    'MetricValidationError',
    'MetricWarning',
    'ModelConvergenceError',
    'ScaleUsageWarning',
    'UnknownMetricError',
    'Contrast',
    'Estimate',
    'EstimateReport',
    'GrowthReport',
    'estimate_growth',
    'estimate_mean',
    'MetricDefinition',
    'get_metric',
    'list_metrics',
    'score',
    'validate',
    'make_metric',
    'metric_growth',
    'metric_mean',
    'score_many',
    'score_metric',
]
