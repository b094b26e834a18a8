"""
Per-vowel multivariate outlier detection on formant measurements.
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Tuple
import logging

from normalization.errors import DegenerateGroupError
from normalization.reshape import require_columns

logger = logging.getLogger(__name__)


def threshold_from_quantile(quantile: float, dof: int = 2) -> float:
    """
    Convert a coverage probability into a Mahalanobis distance threshold.

    Args:
        quantile: Probability in (0, 1), e.g. 0.95
        dof: Number of dimensions (formants)

    Returns:
        sqrt of the chi-squared quantile
    """
    from scipy.stats import chi2

    if not 0 < quantile < 1:
        raise ValueError(f"Quantile must be in (0, 1), got {quantile}")

    return float(np.sqrt(chi2.ppf(quantile, dof)))


def compute_robust_covariance(values: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute robust location and covariance using Minimum Covariance Determinant.

    Args:
        values: (n, p) array of measurements

    Returns:
        Tuple of (robust mean, robust covariance matrix)
    """
    from sklearn.covariance import MinCovDet

    if len(values) < values.shape[1] + 2:
        # Not enough samples for robust covariance
        return np.mean(values, axis=0), np.cov(values, rowvar=False)

    mcd = MinCovDet(random_state=42)
    mcd.fit(values)

    return mcd.location_, mcd.covariance_


def mahalanobis_distances(values: np.ndarray, robust: bool = False) -> np.ndarray:
    """
    Squared Mahalanobis distance of every row from the centroid.

    Uses the sample covariance (N-1) and its pseudo-inverse, so collinear or
    constant groups give finite distances.

    Args:
        values: (n, p) array of measurements
        robust: Use MCD location and covariance instead of the sample ones

    Returns:
        Array of n non-negative squared distances
    """
    values = np.asarray(values, dtype=float)
    if values.ndim != 2:
        raise ValueError(f"Expected a 2-D array, got shape {values.shape}")

    if robust:
        center, cov = compute_robust_covariance(values)
    else:
        center = values.mean(axis=0)
        cov = np.cov(values, rowvar=False)

    inv_cov = np.linalg.pinv(np.atleast_2d(cov))
    diff = values - center
    distances = np.einsum('ij,jk,ik->i', diff, inv_cov, diff)

    # pinv round-off can leave tiny negatives
    return np.clip(distances, 0.0, None)


def detect_outliers_mahalanobis(df: pd.DataFrame,
                                formant_cols: List[str] = ['F1', 'F2'],
                                group_cols: List[str] = ['speaker', 'vowel'],
                                threshold: float = 2.0,
                                min_group_size: int = 3,
                                small_group_policy: str = 'keep',
                                robust: bool = False) -> pd.DataFrame:
    """
    Flag tokens far from their (speaker, vowel) centroid.

    Args:
        df: Token table
        formant_cols: Measurement columns spanning the distance space
        group_cols: Columns defining a group
        threshold: Maximum allowed sqrt(squared Mahalanobis distance)
        min_group_size: Groups smaller than this have no defined covariance
        small_group_policy: 'keep' passes small groups through unflagged,
            'error' raises DegenerateGroupError
        robust: Use MCD covariance estimates

    Returns:
        DataFrame on df's index with 'mahal_dist' and 'is_outlier' columns
    """
    require_columns(df, group_cols + formant_cols)

    if small_group_policy not in ('keep', 'error'):
        raise ValueError(f"Unknown small group policy: {small_group_policy}")

    distances = np.full(len(df), np.nan)

    for stratum, positions in df.groupby(group_cols, sort=False).indices.items():
        if len(positions) < min_group_size:
            if small_group_policy == 'error':
                speaker = stratum[0] if isinstance(stratum, tuple) else stratum
                raise DegenerateGroupError(
                    f"Group {stratum} has {len(positions)} tokens; "
                    f"at least {min_group_size} needed for a covariance",
                    speaker=speaker
                )
            continue

        values = df.iloc[positions][formant_cols].to_numpy(dtype=float)
        distances[positions] = np.sqrt(mahalanobis_distances(values, robust))

    flags = pd.DataFrame({'mahal_dist': distances}, index=df.index)
    # NaN distance (small or unlabelled group) is never an outlier
    flags['is_outlier'] = flags['mahal_dist'] > threshold
    return flags


def filter_outliers(df: pd.DataFrame,
                    formant_cols: List[str] = ['F1', 'F2'],
                    group_cols: List[str] = ['speaker', 'vowel'],
                    threshold: float = 2.0,
                    min_group_size: int = 3,
                    small_group_policy: str = 'keep',
                    max_iterations: Optional[int] = 1,
                    robust: bool = False) -> pd.DataFrame:
    """
    Drop tokens whose sqrt(squared Mahalanobis distance) exceeds the threshold.

    By default a single pass is made: each token is judged against the
    centroid and covariance of its input group. Removing tokens moves those
    statistics, so a second pass may flag more. With max_iterations=None the
    filter repeats until a pass removes nothing; that result is a fixed point
    and filtering it again with the same parameters returns it unchanged.

    Args:
        df: Token table
        formant_cols: Measurement columns
        group_cols: Columns defining a group
        threshold: Maximum allowed distance
        min_group_size: Minimum group size for a defined covariance
        small_group_policy: 'keep' or 'error' for groups below min_group_size
        max_iterations: Number of passes (None: repeat until stable)
        robust: Use MCD covariance estimates

    Returns:
        Filtered copy of df with the original index labels of the kept rows
    """
    filtered = df
    n_start = len(filtered)
    iteration = 0

    while max_iterations is None or iteration < max_iterations:
        flags = detect_outliers_mahalanobis(
            filtered, formant_cols, group_cols, threshold,
            min_group_size, small_group_policy, robust
        )
        n_outliers = int(flags['is_outlier'].sum())
        iteration += 1

        logger.debug(f"Outlier pass {iteration}: {n_outliers} tokens flagged")

        if n_outliers == 0:
            break

        filtered = filtered[~flags['is_outlier'].to_numpy()]

    logger.info(f"Outlier filter removed {n_start - len(filtered)} of {n_start} tokens "
                f"in {iteration} passes (threshold={threshold})")

    return filtered.copy()


def compute_stratum_statistics(df: pd.DataFrame,
                               metric_cols: List[str],
                               stratum_cols: List[str] = ['speaker']) -> pd.DataFrame:
    """
    Descriptive statistics of each metric per stratum.

    Args:
        df: Token table
        metric_cols: Numeric columns to describe
        stratum_cols: Columns to group by

    Returns:
        One row per stratum with n_tokens and <metric>_{mean,sd,min,max} columns
    """
    require_columns(df, stratum_cols + metric_cols)

    grouped = df.groupby(stratum_cols)
    stats = grouped.size().rename('n_tokens').to_frame()

    for metric in metric_cols:
        described = grouped[metric].agg(['mean', 'std', 'min', 'max'])
        described.columns = [f'{metric}_{name}' for name in ['mean', 'sd', 'min', 'max']]
        stats = stats.join(described)

    return stats.reset_index()
