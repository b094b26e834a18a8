"""
Loading, aggregation and storage of vowel token tables.
"""

import pandas as pd
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Any
from tqdm import tqdm
import logging

from normalization.errors import InvalidInputError
from normalization.methods import pooled_log_means
from outliers.statistical import compute_stratum_statistics

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = {
    'speaker': 'speaker',
    'sex': 'sex',
    'word': 'word',
    'vowel': 'vowel',
    'formants': ['F1', 'F2']
}


def resolve_columns(columns: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    resolved = dict(DEFAULT_COLUMNS)
    if columns:
        resolved.update({k: v for k, v in columns.items() if v is not None})
    return resolved


def read_vowel_file(path: str, columns: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """
    Read one tab-delimited vowel token file.

    The sex column is forced to text: a bare 'F' or 'T' must stay a string.

    Args:
        path: Path to the file
        columns: Column name mapping (see DEFAULT_COLUMNS)

    Returns:
        Raw table as read from disk
    """
    columns = resolve_columns(columns)

    dtype = {columns['sex']: str, columns['speaker']: str, columns['vowel']: str}
    df = pd.read_csv(path, sep='\t', dtype=dtype, keep_default_na=True)

    logger.info(f"Read {len(df)} tokens from {path}")
    return df


def select_columns(df: pd.DataFrame, columns: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """
    Keep the identifier, word, vowel and formant columns.

    Rows with missing or non-numeric formants are dropped with a warning.
    """
    columns = resolve_columns(columns)
    formant_cols = list(columns['formants'])

    required = [columns['speaker'], columns['word'], columns['vowel']] + formant_cols
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise InvalidInputError(f"Missing required columns: {missing}")

    keep = [columns['speaker']]
    if columns['sex'] in df.columns:
        keep.append(columns['sex'])
    keep += [columns['word'], columns['vowel']] + formant_cols
    if 'source_file' in df.columns:
        keep.append('source_file')

    selected = df[keep].copy()
    for col in formant_cols:
        selected[col] = pd.to_numeric(selected[col], errors='coerce')

    incomplete = selected[formant_cols + [columns['speaker'], columns['vowel']]].isna().any(axis=1)
    if incomplete.any():
        logger.warning(f"Dropping {int(incomplete.sum())} tokens with missing "
                       f"speaker, vowel or formant values")
        selected = selected[~incomplete]

    return selected.reset_index(drop=True)


def load_vowel_data(paths: List[str], columns: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """
    Read and combine several token files into one table.

    Args:
        paths: Tab-delimited input files
        columns: Column name mapping

    Returns:
        Combined table restricted to the analysis columns
    """
    if not paths:
        raise InvalidInputError("No input files given")

    frames = []
    for path in tqdm(paths, desc="Loading vowel files", disable=len(paths) < 2):
        try:
            frame = read_vowel_file(path, columns)
        except (OSError, pd.errors.ParserError) as e:
            logger.error(f"Error loading {path}: {e}")
            raise
        frame['source_file'] = os.path.basename(path)
        frames.append(frame)

    combined = pd.concat(frames, ignore_index=True)
    logger.info(f"Combined dataset: {len(combined)} tokens from {len(paths)} files")

    return select_columns(combined, columns)


def compute_vowel_means(df: pd.DataFrame,
                        value_cols: List[str],
                        speaker_col: str = 'speaker',
                        vowel_col: str = 'vowel') -> pd.DataFrame:
    """
    Mean of each value column per (speaker, vowel), the table the plots consume.

    Args:
        df: Token table
        value_cols: Raw and/or normalized formant columns
        speaker_col: Speaker identifier column
        vowel_col: Vowel class column

    Returns:
        One row per (speaker, vowel) with n_tokens and the mean of each column
    """
    grouped = df.groupby([speaker_col, vowel_col])
    means = grouped[value_cols].mean()
    means.insert(0, 'n_tokens', grouped.size())

    return means.reset_index()


def compute_speaker_statistics(df: pd.DataFrame,
                               formant_cols: List[str],
                               speaker_col: str = 'speaker',
                               vowel_col: str = 'vowel') -> pd.DataFrame:
    """Per-speaker descriptive statistics plus the pooled log mean."""
    stats = compute_stratum_statistics(df, formant_cols, [speaker_col])

    stats.insert(2, 'n_vowels', stats[speaker_col].map(df.groupby(speaker_col)[vowel_col].nunique()))
    stats['log_mean'] = stats[speaker_col].map(pooled_log_means(df, formant_cols, speaker_col))

    return stats


def save_outputs(tables: Dict[str, pd.DataFrame], output_dir: str) -> Dict[str, str]:
    """
    Write each table as a tab-delimited file.

    Args:
        tables: Mapping of file stem to table
        output_dir: Output directory

    Returns:
        Mapping of file stem to written path
    """
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    paths = {}
    for name, table in tables.items():
        output_path = os.path.join(output_dir, f"{name}.tsv")
        table.to_csv(output_path, sep='\t', index=False)
        paths[name] = output_path
        logger.info(f"Saved {name}: {len(table)} rows to {output_path}")

    return paths


def create_summary_statistics(raw_df: pd.DataFrame,
                              filtered_df: pd.DataFrame,
                              normalized_df: pd.DataFrame,
                              methods: List[str],
                              speaker_col: str = 'speaker',
                              vowel_col: str = 'vowel') -> Dict[str, Any]:
    """
    Create a JSON-serialisable summary of one pipeline run.

    Args:
        raw_df: Table as loaded
        filtered_df: Table after outlier removal
        normalized_df: Table after normalization
        methods: Normalization methods applied
        speaker_col: Speaker identifier column
        vowel_col: Vowel class column

    Returns:
        Dictionary with token counts, retention and per-speaker breakdown
    """
    summary = {
        'timestamp': pd.Timestamp.now().isoformat(),
        'methods': list(methods),
        'total_tokens': int(len(raw_df)),
        'tokens_after_outlier_filter': int(len(filtered_df)),
        'tokens_normalized': int(len(normalized_df)),
        'retention_rate': float(len(filtered_df) / len(raw_df)) if len(raw_df) > 0 else 0.0,
        'n_speakers': int(raw_df[speaker_col].nunique()),
        'n_vowels': int(raw_df[vowel_col].nunique())
    }

    raw_counts = raw_df.groupby(speaker_col).size()
    kept_counts = filtered_df.groupby(speaker_col).size()
    normalized_speakers = set(normalized_df[speaker_col].unique())

    speaker_stats = {}
    for speaker, total in raw_counts.items():
        kept = int(kept_counts.get(speaker, 0))
        speaker_stats[str(speaker)] = {
            'total': int(total),
            'kept': kept,
            'retention_rate': float(kept / total) if total > 0 else 0.0,
            'normalized': speaker in normalized_speakers
        }
    summary['speaker_stats'] = speaker_stats

    dropped = sorted(str(s) for s in set(raw_counts.index) - normalized_speakers)
    if dropped:
        summary['dropped_speakers'] = dropped

    return summary


def save_summary(summary: Dict[str, Any], output_dir: str) -> str:
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    summary_path = os.path.join(output_dir, 'pipeline_summary.json')
    with open(summary_path, 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Saved pipeline summary to {summary_path}")
    return summary_path
