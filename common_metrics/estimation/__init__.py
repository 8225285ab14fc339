"""
Clustered mean, contrast and growth estimation
"""
from .growth_estimator import estimate_growth
from .mean_estimator import estimate_mean
from .model_fit import FittedModel, LinearEstimate, cell_design, fit_linear_model
from .reports import Contrast, Estimate, EstimateReport, GrowthReport

__all__ = [
    'estimate_growth',
    'estimate_mean',
    'FittedModel',
    'LinearEstimate',
    'cell_design',
    'fit_linear_model',
    'Contrast',
    'Estimate',
    'EstimateReport',
    'GrowthReport',
]
