#!/usr/bin/env python3
"""Vowel formant normalization pipeline."""

import argparse
import logging
import os
import sys
import yaml
from typing import Any, Dict, List, Optional

from utils.data_utils import (
    load_vowel_data, resolve_columns, compute_vowel_means, compute_speaker_statistics,
    save_outputs, create_summary_statistics, save_summary
)
from utils.visualization import generate_analysis_reports
from outliers.statistical import filter_outliers, threshold_from_quantile
from normalization.methods import normalize_all, METHOD_SUFFIXES

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def load_config(config_path: str) -> Dict[str, Any]:
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}
    return config


def resolve_threshold(outlier_config: Dict[str, Any], n_formants: int) -> float:
    quantile = outlier_config.get('quantile')
    if quantile is not None:
        return threshold_from_quantile(quantile, n_formants)
    return float(outlier_config.get('threshold', 2.0))


def banner(title: str) -> None:
    logger.info("=" * 80)
    logger.info(title)
    logger.info("=" * 80)


def run_pipeline(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Load, filter, normalize, aggregate and report.

    Args:
        config: Configuration dictionary (see config.yaml)

    Returns:
        Dictionary with the intermediate tables and the run summary
    """
    paths = config.get('paths', {})
    columns = resolve_columns(config.get('columns'))
    outlier_config = config.get('outlier_detection', {})
    norm_config = config.get('normalization', {})

    speaker_col = columns['speaker']
    vowel_col = columns['vowel']
    formant_cols = list(columns['formants'])
    output_dir = paths.get('output_dir', 'output')

    methods = norm_config.get('methods') or list(METHOD_SUFFIXES)
    unknown = [m for m in methods if m not in METHOD_SUFFIXES]
    if unknown:
        raise ValueError(f"Unknown normalization methods: {unknown}")
    errors = norm_config.get('errors', 'raise')

    banner("STEP 1: Loading Vowel Tokens")
    raw_df = load_vowel_data(paths.get('inputs', []), columns)
    logger.info(f"Speakers: {raw_df[speaker_col].nunique()}, "
                f"vowel classes: {raw_df[vowel_col].nunique()}")

    banner("STEP 2: Filtering Outliers")
    if outlier_config.get('enabled', True):
        threshold = resolve_threshold(outlier_config, len(formant_cols))
        filtered_df = filter_outliers(
            raw_df,
            formant_cols=formant_cols,
            group_cols=[speaker_col, vowel_col],
            threshold=threshold,
            min_group_size=outlier_config.get('min_group_size', 3),
            small_group_policy=outlier_config.get('small_group_policy', 'keep'),
            max_iterations=outlier_config.get('max_iterations', 1),
            robust=outlier_config.get('robust', False)
        )
    else:
        logger.info("Outlier filter disabled")
        filtered_df = raw_df.copy()

    banner("STEP 3: Normalizing")
    normalized_df = normalize_all(filtered_df, methods, formant_cols,
                                  speaker_col, vowel_col, errors)

    banner("STEP 4: Aggregating Vowel Means")
    suffixes = [METHOD_SUFFIXES[m] for m in methods]
    value_cols = formant_cols + [f'{col}_{suffix}' for suffix in suffixes for col in formant_cols]
    means = compute_vowel_means(normalized_df, value_cols, speaker_col, vowel_col)
    # speakers dropped during normalization have no usable statistics
    kept_df = filtered_df[filtered_df[speaker_col].isin(normalized_df[speaker_col].unique())]
    speaker_stats = compute_speaker_statistics(kept_df, formant_cols, speaker_col, vowel_col)
    logger.info(f"{len(means)} (speaker, vowel) means computed")

    banner("STEP 5: Saving Outputs")
    save_outputs({
        'normalized_tokens': normalized_df,
        'vowel_means': means,
        'speaker_statistics': speaker_stats
    }, output_dir)

    summary = create_summary_statistics(raw_df, filtered_df, normalized_df,
                                        methods, speaker_col, vowel_col)
    save_summary(summary, output_dir)

    if config.get('reporting', {}).get('generate_plots', True):
        banner("STEP 6: Generating Reports")
        generate_analysis_reports(means, summary, speaker_stats, suffixes, config, output_dir)

    logger.info(f"Tokens normalized: {len(normalized_df):,} of {len(raw_df):,} loaded")
    logger.info(f"Output directory: {output_dir}")

    return {
        'raw': raw_df,
        'filtered': filtered_df,
        'normalized': normalized_df,
        'means': means,
        'speaker_stats': speaker_stats,
        'summary': summary
    }


def main(config_path: str,
         inputs: Optional[List[str]] = None,
         methods: Optional[List[str]] = None) -> Dict[str, Any]:
    config = load_config(config_path)

    if inputs:
        config.setdefault('paths', {})['inputs'] = inputs
    if methods:
        config.setdefault('normalization', {})['methods'] = methods

    log_level = config.get('logging', {}).get('level', 'INFO')
    setup_logging(log_level, config.get('paths', {}).get('log_file'))

    logger.info("Starting vowel normalization pipeline")
    return run_pipeline(config)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description='Vowel Formant Normalization Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example usage:
  python main.py --config config.yaml
  python main.py --config config.yaml --method lobanov nearey2

The pipeline will:
1. Load the tab-delimited vowel token files
2. Remove per-(speaker, vowel) Mahalanobis outliers
3. Apply Lobanov, Nearey 2 and/or Watt & Fabricius normalization
4. Write normalized tokens, vowel means and vowel space plots
        """
    )

    parser.add_argument(
        '--config',
        type=str,
        required=True,
        help='Path to configuration YAML file'
    )

    parser.add_argument(
        '--inputs',
        type=str,
        nargs='*',
        help='Override input files (space-separated)'
    )

    parser.add_argument(
        '--method',
        type=str,
        nargs='*',
        choices=list(METHOD_SUFFIXES),
        help='Override normalization methods'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Validate configuration without processing'
    )

    args = parser.parse_args()

    if not os.path.exists(args.config):
        print(f"Error: Configuration file not found: {args.config}")
        sys.exit(1)

    if args.dry_run:
        print("Dry run mode - validating configuration...")
        try:
            config = load_config(args.config)
            inputs = args.inputs or config.get('paths', {}).get('inputs', [])
            missing = [p for p in inputs if not os.path.exists(p)]
            if not inputs or missing:
                raise ValueError(f"Missing input files: {missing or 'none configured'}")
            print("Configuration is valid!")
            print(f"Inputs: {inputs}")
            print(f"Methods: {args.method or config.get('normalization', {}).get('methods')}")
            print(f"Output directory: {config.get('paths', {}).get('output_dir', 'output')}")
        except (OSError, ValueError, yaml.YAMLError) as e:
            print(f"Configuration error: {e}")
            sys.exit(1)
    else:
        main(args.config, args.inputs, args.method)
