"""
Metric definitions, validation and scoring
"""
from .metric_catalog import (
    ConditionalSum,
    MetricCatalog,
    MetricDefinition,
    RescaledSum,
    SimpleSum,
    default_catalog,
    get_metric,
    list_metrics,
)
from .metric_scoring import ScoredDataset, rescale, score
from .metric_validation import ValidationResult, validate

__all__ = [
    'ConditionalSum',
    'MetricCatalog',
    'MetricDefinition',
    'RescaledSum',
    'SimpleSum',
    'default_catalog',
    'get_metric',
    'list_metrics',
    'ScoredDataset',
    'rescale',
    'score',
    'ValidationResult',
    'validate',
]
