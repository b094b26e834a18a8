"""
Speaker-intrinsic vowel formant normalization.
"""

from .errors import (
    NormalizationError,
    InvalidInputError,
    DegenerateGroupError,
    InsufficientDataError,
    JoinCardinalityError
)

from .methods import (
    lobanov,
    nearey2,
    watt_fabricius,
    pooled_log_means,
    vowel_means,
    triangle_points,
    scaling_factors,
    speaker_scalers,
    normalize,
    normalize_all,
    METHOD_SUFFIXES
)

from .reshape import (
    assign_token_ids,
    to_long,
    to_wide,
    merge_scalers
)

__all__ = [
    'NormalizationError',
    'InvalidInputError',
    'DegenerateGroupError',
    'InsufficientDataError',
    'JoinCardinalityError',
    'lobanov',
    'nearey2',
    'watt_fabricius',
    'pooled_log_means',
    'vowel_means',
    'triangle_points',
    'scaling_factors',
    'speaker_scalers',
    'normalize',
    'normalize_all',
    'METHOD_SUFFIXES',
    'assign_token_ids',
    'to_long',
    'to_wide',
    'merge_scalers'
]
