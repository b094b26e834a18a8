"""
Speaker-intrinsic vowel formant normalization methods.

Every method is a pure function from a token table to a copy of that table
with one normalized column per formant appended (``<formant>_<suffix>``).
All statistics are computed independently per speaker.
"""

import numpy as np
import pandas as pd
from scipy.stats import gmean
from typing import Dict, List, Optional
import logging

from .errors import (
    NormalizationError,
    InvalidInputError,
    DegenerateGroupError,
    InsufficientDataError,
)
from .reshape import (
    TOKEN_ID_COL,
    VALUE_COL,
    assign_token_ids,
    merge_scalers,
    require_columns,
    to_long,
    to_wide,
)

logger = logging.getLogger(__name__)

DEFAULT_FORMANTS = ['F1', 'F2']

METHOD_SUFFIXES = {
    'lobanov': 'lobanov',
    'nearey2': 'nearey2',
    'watt_fabricius': 'wf',
}


def _check_formants(df: pd.DataFrame,
                    formant_cols: List[str],
                    speaker_col: str,
                    positive: bool = False) -> None:
    require_columns(df, [speaker_col] + formant_cols)

    # groupby leaves unlabelled rows out, so they would come back as NaN
    unlabelled = df[speaker_col].isna()
    if unlabelled.any():
        raise InvalidInputError(
            f"{int(unlabelled.sum())} tokens have no {speaker_col} value"
        )

    for col in formant_cols:
        values = pd.to_numeric(df[col], errors='coerce')

        missing = values.isna()
        if missing.any():
            speaker = df.loc[missing, speaker_col].iloc[0]
            raise InvalidInputError(
                f"{int(missing.sum())} missing or non-numeric {col} values "
                f"(first for speaker {speaker})",
                speaker=speaker
            )

        if positive:
            non_positive = values <= 0
            if non_positive.any():
                speaker = df.loc[non_positive, speaker_col].iloc[0]
                raise InvalidInputError(
                    f"Non-positive {col} value for speaker {speaker}",
                    speaker=speaker
                )


def output_columns(formant_cols: List[str], suffix: str) -> Dict[str, str]:
    return {col: f'{col}_{suffix}' for col in formant_cols}


# ---------------------------------------------------------
# Lobanov
# ---------------------------------------------------------

def lobanov(df: pd.DataFrame,
            formant_cols: List[str] = DEFAULT_FORMANTS,
            speaker_col: str = 'speaker',
            suffix: str = METHOD_SUFFIXES['lobanov']) -> pd.DataFrame:
    """
    Lobanov (z-score) normalization per speaker and formant.

    Args:
        df: Token table
        formant_cols: Formant columns to normalize
        speaker_col: Speaker identifier column
        suffix: Suffix for the normalized columns

    Returns:
        Copy of df with z-scored formant columns appended

    Raises:
        DegenerateGroupError: A speaker has zero or undefined standard
            deviation for some formant
    """
    _check_formants(df, formant_cols, speaker_col)

    grouped = df.groupby(speaker_col)[formant_cols]

    # ddof=1: single-token speakers give NaN here
    sds = grouped.std()
    degenerate = sds.isna() | (sds <= 0)
    if degenerate.any(axis=None):
        speaker = degenerate.any(axis=1).idxmax()
        formants = [col for col in formant_cols if degenerate.at[speaker, col]]
        raise DegenerateGroupError(
            f"Zero or undefined standard deviation for speaker {speaker} "
            f"({', '.join(formants)})",
            speaker=speaker
        )

    means = grouped.transform('mean')
    stds = grouped.transform('std')

    out = df.copy()
    for col, new_col in output_columns(formant_cols, suffix).items():
        out[new_col] = (df[col] - means[col]) / stds[col]

    return out


# ---------------------------------------------------------
# Nearey 2
# ---------------------------------------------------------

def pooled_log_means(df: pd.DataFrame,
                     formant_cols: List[str] = DEFAULT_FORMANTS,
                     speaker_col: str = 'speaker') -> pd.Series:
    """Mean of ln(Hz) pooled over all formants of each speaker."""
    _check_formants(df, formant_cols, speaker_col, positive=True)

    return df.groupby(speaker_col)[formant_cols].apply(
        lambda group: float(np.log(group.to_numpy(dtype=float)).mean())
    ).rename('log_mean')


def _nearey2_long(df: pd.DataFrame,
                  formant_cols: List[str],
                  speaker_col: str) -> pd.DataFrame:
    work = assign_token_ids(df[[speaker_col] + formant_cols].reset_index(drop=True))

    long_df = to_long(work, formant_cols, [speaker_col])
    long_df['log_hz'] = np.log(long_df[VALUE_COL].astype(float))
    long_df['log_mean'] = long_df.groupby(speaker_col)['log_hz'].transform('mean')
    long_df['normalized'] = np.exp(long_df['log_hz'] - long_df['log_mean'])

    wide = to_wide(long_df, value_col='normalized').reindex(work[TOKEN_ID_COL])
    if len(wide) != len(df) or wide[formant_cols].isna().any(axis=None):
        raise InvalidInputError("Long-to-wide restore did not reproduce every token")

    return pd.DataFrame(wide[formant_cols].to_numpy(), index=df.index, columns=formant_cols)


def _nearey2_direct(df: pd.DataFrame,
                    formant_cols: List[str],
                    speaker_col: str) -> pd.DataFrame:
    # exp(ln x - mean(ln pooled)) == x / geometric mean of the pooled values
    pooled_gmean = df.groupby(speaker_col)[formant_cols].apply(
        lambda group: float(gmean(group.to_numpy(dtype=float).ravel()))
    )
    factors = df[speaker_col].map(pooled_gmean)
    return df[formant_cols].astype(float).div(factors, axis=0)


def nearey2(df: pd.DataFrame,
            formant_cols: List[str] = DEFAULT_FORMANTS,
            speaker_col: str = 'speaker',
            reshape: bool = True,
            suffix: str = METHOD_SUFFIXES['nearey2']) -> pd.DataFrame:
    """
    Nearey 2 normalization: log-mean centering pooled across formants.

    One log mean is computed per speaker over F1 and F2 together, so the
    relative scale between formants is preserved.

    Args:
        df: Token table
        formant_cols: Formant columns to pool and normalize
        speaker_col: Speaker identifier column
        reshape: Compute the pooled mean on a long (token, formant, value)
            table and pivot back; otherwise divide by the pooled geometric
            mean directly. Both give the same numbers.
        suffix: Suffix for the normalized columns

    Returns:
        Copy of df with normalized formant columns appended

    Raises:
        InvalidInputError: A formant value is missing or not positive
    """
    _check_formants(df, formant_cols, speaker_col, positive=True)

    if reshape:
        normalized = _nearey2_long(df, formant_cols, speaker_col)
    else:
        normalized = _nearey2_direct(df, formant_cols, speaker_col)

    out = df.copy()
    for col, new_col in output_columns(formant_cols, suffix).items():
        out[new_col] = normalized[col].to_numpy()

    return out


# ---------------------------------------------------------
# Watt & Fabricius
# ---------------------------------------------------------

def vowel_means(df: pd.DataFrame,
                formant_cols: List[str] = DEFAULT_FORMANTS,
                speaker_col: str = 'speaker',
                vowel_col: str = 'vowel') -> pd.DataFrame:
    """One centroid per (speaker, vowel)."""
    require_columns(df, [speaker_col, vowel_col] + formant_cols)
    return df.groupby([speaker_col, vowel_col])[formant_cols].mean().reset_index()


def triangle_points(means: pd.DataFrame,
                    f1_col: str = 'F1',
                    f2_col: str = 'F2',
                    speaker_col: str = 'speaker') -> pd.DataFrame:
    """
    Derive the beet/bat/school corners of each speaker's vowel triangle.

    beet takes the smallest centroid F1 and the largest centroid F2, which
    may come from different vowels. bat takes the largest centroid F1 and
    the F2 of that same vowel. school sits at (beet F1, beet F1).

    Args:
        means: Per (speaker, vowel) centroid table
        f1_col: F1 column
        f2_col: F2 column
        speaker_col: Speaker identifier column

    Returns:
        Table with three rows per speaker: speaker, point, F1, F2
    """
    rows = []

    for speaker, group in means.groupby(speaker_col, sort=False):
        if group.empty or group[[f1_col, f2_col]].isna().any(axis=None):
            raise InsufficientDataError(
                f"No usable vowel centroids for speaker {speaker}",
                speaker=speaker
            )

        beet_f1 = group[f1_col].min()
        beet_f2 = group[f2_col].max()

        bat_idx = group[f1_col].idxmax()
        bat_f1 = group.at[bat_idx, f1_col]
        bat_f2 = group.at[bat_idx, f2_col]

        rows.append({speaker_col: speaker, 'point': 'beet', f1_col: beet_f1, f2_col: beet_f2})
        rows.append({speaker_col: speaker, 'point': 'bat', f1_col: bat_f1, f2_col: bat_f2})
        rows.append({speaker_col: speaker, 'point': 'school', f1_col: beet_f1, f2_col: beet_f1})

    return pd.DataFrame(rows, columns=[speaker_col, 'point', f1_col, f2_col])


def scaling_factors(triangle: pd.DataFrame,
                    f1_col: str = 'F1',
                    f2_col: str = 'F2',
                    speaker_col: str = 'speaker') -> pd.DataFrame:
    """S1/S2 per speaker: mean F1 and F2 of the three triangle points."""
    return (
        triangle.groupby(speaker_col, sort=False)[[f1_col, f2_col]]
        .mean()
        .rename(columns={f1_col: 'S1', f2_col: 'S2'})
        .reset_index()
    )


def speaker_scalers(df: pd.DataFrame,
                    f1_col: str = 'F1',
                    f2_col: str = 'F2',
                    speaker_col: str = 'speaker',
                    vowel_col: str = 'vowel') -> pd.DataFrame:
    """
    Compute the Watt & Fabricius scaling factors for every speaker in df.

    Raises:
        InsufficientDataError: A speaker has tokens but no labelled vowel class
    """
    _check_formants(df, [f1_col, f2_col], speaker_col, positive=True)

    means = vowel_means(df, [f1_col, f2_col], speaker_col, vowel_col)

    without_vowels = sorted(set(df[speaker_col].unique()) - set(means[speaker_col]))
    if without_vowels:
        raise InsufficientDataError(
            f"No vowel classes for speaker {without_vowels[0]}",
            speaker=without_vowels[0]
        )

    triangle = triangle_points(means, f1_col, f2_col, speaker_col)
    return scaling_factors(triangle, f1_col, f2_col, speaker_col)


def watt_fabricius(df: pd.DataFrame,
                   formant_cols: List[str] = DEFAULT_FORMANTS,
                   speaker_col: str = 'speaker',
                   vowel_col: str = 'vowel',
                   suffix: str = METHOD_SUFFIXES['watt_fabricius']) -> pd.DataFrame:
    """
    Watt & Fabricius normalization: divide by triangle-derived factors.

    Args:
        df: Token table
        formant_cols: [F1 column, F2 column]
        speaker_col: Speaker identifier column
        vowel_col: Vowel class column
        suffix: Suffix for the normalized columns

    Returns:
        Copy of df with F1/S1 and F2/S2 columns appended
    """
    if len(formant_cols) != 2:
        raise InvalidInputError(
            f"Watt & Fabricius needs exactly two formants, got {formant_cols}"
        )
    f1_col, f2_col = formant_cols

    scalers = speaker_scalers(df, f1_col, f2_col, speaker_col, vowel_col)
    merged = merge_scalers(df[[speaker_col]], scalers,
                           key_col=speaker_col, scaler_cols=['S1', 'S2'])

    new_cols = output_columns(formant_cols, suffix)

    out = df.copy()
    out[new_cols[f1_col]] = df[f1_col] / merged['S1']
    out[new_cols[f2_col]] = df[f2_col] / merged['S2']

    return out


# ---------------------------------------------------------
# Dispatch
# ---------------------------------------------------------

def normalize(df: pd.DataFrame,
              method: str = 'lobanov',
              formant_cols: List[str] = DEFAULT_FORMANTS,
              speaker_col: str = 'speaker',
              vowel_col: str = 'vowel',
              errors: str = 'raise') -> pd.DataFrame:
    """
    Apply one normalization method.

    Args:
        df: Token table
        method: 'lobanov', 'nearey2' or 'watt_fabricius'
        formant_cols: Formant columns
        speaker_col: Speaker identifier column
        vowel_col: Vowel class column (Watt & Fabricius only)
        errors: 'raise' to propagate the first per-speaker failure, 'drop'
            to remove the failing speaker and normalize the rest

    Returns:
        Normalized copy of df (fewer speakers if any were dropped)
    """
    if method not in METHOD_SUFFIXES:
        raise ValueError(f"Unknown normalization method: {method}")
    if errors not in ('raise', 'drop'):
        raise ValueError(f"Unknown error policy: {errors}")

    def apply(frame):
        if method == 'lobanov':
            return lobanov(frame, formant_cols, speaker_col)
        elif method == 'nearey2':
            return nearey2(frame, formant_cols, speaker_col)
        return watt_fabricius(frame, formant_cols, speaker_col, vowel_col)

    dropped = []
    while True:
        try:
            result = apply(df)
            break
        except NormalizationError as e:
            if errors == 'raise' or e.speaker is None:
                raise
            logger.warning(f"{method}: dropping speaker {e.speaker}: {e}")
            dropped.append(e.speaker)
            df = df[df[speaker_col] != e.speaker]
            if df.empty:
                raise InsufficientDataError(
                    f"{method}: every speaker was dropped ({dropped})"
                ) from e

    if dropped:
        logger.warning(f"{method}: {len(dropped)} speakers dropped: {dropped}")

    return result


def normalize_all(df: pd.DataFrame,
                  methods: Optional[List[str]] = None,
                  formant_cols: List[str] = DEFAULT_FORMANTS,
                  speaker_col: str = 'speaker',
                  vowel_col: str = 'vowel',
                  errors: str = 'raise') -> pd.DataFrame:
    """Apply several methods in turn, appending each method's columns."""
    methods = methods or list(METHOD_SUFFIXES)

    for method in methods:
        before = len(df)
        df = normalize(df, method, formant_cols, speaker_col, vowel_col, errors)
        logger.info(f"Applied {method} normalization to {len(df)} tokens")
        if len(df) != before:
            logger.warning(f"{method}: {before - len(df)} tokens removed with their speakers")

    return df
