"""
Reshaping and joining helpers shared by the normalization methods.
"""

import numpy as np
import pandas as pd
from typing import List, Optional
import logging

from .errors import InvalidInputError, JoinCardinalityError

logger = logging.getLogger(__name__)

TOKEN_ID_COL = 'token_id'
FORMANT_COL = 'formant'
VALUE_COL = 'hz'


def require_columns(df: pd.DataFrame, columns: List[str]) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise InvalidInputError(f"Missing required columns: {missing}")


def assign_token_ids(df: pd.DataFrame, id_col: str = TOKEN_ID_COL) -> pd.DataFrame:
    """
    Attach a unique positional id to every token.

    Args:
        df: Token table
        id_col: Name of the id column to create

    Returns:
        Copy of the table with the id column added
    """
    if id_col in df.columns:
        if df[id_col].duplicated().any():
            raise InvalidInputError(f"Column '{id_col}' exists but is not unique")
        return df.copy()

    df = df.copy()
    df[id_col] = np.arange(len(df))
    return df


def to_long(df: pd.DataFrame,
            formant_cols: List[str],
            id_vars: List[str],
            id_col: str = TOKEN_ID_COL) -> pd.DataFrame:
    """
    Flatten formant columns into one (id, formant, value) row per measurement.

    Args:
        df: Token table carrying a unique id column
        formant_cols: Formant columns to stack
        id_vars: Extra columns to carry into the long table (e.g. speaker)
        id_col: Unique token id column

    Returns:
        Long table with len(df) * len(formant_cols) rows
    """
    require_columns(df, [id_col] + id_vars + formant_cols)

    keep = [id_col] + [col for col in id_vars if col != id_col]
    long_df = pd.melt(df, id_vars=keep, value_vars=formant_cols,
                      var_name=FORMANT_COL, value_name=VALUE_COL)
    return long_df


def to_wide(long_df: pd.DataFrame,
            value_col: str = VALUE_COL,
            id_col: str = TOKEN_ID_COL) -> pd.DataFrame:
    """
    Restore one row per token from a long table.

    Args:
        long_df: Table with id, formant and value columns
        value_col: Column holding the values to project into formant columns
        id_col: Unique token id column

    Returns:
        Wide table indexed by token id with one column per formant name
    """
    if long_df.duplicated([id_col, FORMANT_COL]).any():
        raise InvalidInputError(
            f"Duplicate ({id_col}, {FORMANT_COL}) pairs; cannot restore wide shape"
        )

    wide = long_df.pivot(index=id_col, columns=FORMANT_COL, values=value_col)
    wide.columns.name = None
    return wide


def merge_scalers(df: pd.DataFrame,
                  scalers: pd.DataFrame,
                  key_col: str = 'speaker',
                  scaler_cols: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Join one row of per-speaker factors onto every token of that speaker.

    Args:
        df: Token table
        scalers: Summary table with exactly one row per key
        key_col: Join key present in both tables
        scaler_cols: Summary columns to carry over (default: all but the key)

    Returns:
        Token table with the same index and row count plus the scaler columns
    """
    require_columns(df, [key_col])
    require_columns(scalers, [key_col])

    if scaler_cols is None:
        scaler_cols = [col for col in scalers.columns if col != key_col]

    duplicated = scalers[key_col][scalers[key_col].duplicated()].unique()
    if len(duplicated) > 0:
        raise JoinCardinalityError(
            f"Scaler table has more than one row for {list(duplicated)}",
            speaker=str(duplicated[0])
        )

    missing = sorted(set(df[key_col].unique()) - set(scalers[key_col]))
    if missing:
        raise JoinCardinalityError(
            f"Scaler table has no row for {missing}",
            speaker=str(missing[0])
        )

    lookup = scalers.set_index(key_col)[scaler_cols]
    merged = df.join(lookup, on=key_col)

    if len(merged) != len(df):
        raise JoinCardinalityError(
            f"Join changed row count from {len(df)} to {len(merged)}"
        )

    return merged
