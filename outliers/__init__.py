"""
Outlier detection modules for vowel formant measurements.
"""

from .statistical import (
    threshold_from_quantile,
    compute_robust_covariance,
    mahalanobis_distances,
    detect_outliers_mahalanobis,
    filter_outliers,
    compute_stratum_statistics
)

__all__ = [
    'threshold_from_quantile',
    'compute_robust_covariance',
    'mahalanobis_distances',
    'detect_outliers_mahalanobis',
    'filter_outliers',
    'compute_stratum_statistics'
]
