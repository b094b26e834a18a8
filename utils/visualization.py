"""
Vowel space plots and text reports.
"""

import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from pathlib import Path
import os
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

# Set style
plt.style.use('seaborn-v0_8')
sns.set_palette("husl")

METHOD_TITLES = {
    'raw': 'Raw (Hz)',
    'lobanov': 'Lobanov (z-score)',
    'nearey2': 'Nearey 2',
    'wf': 'Watt & Fabricius'
}


def draw_vowel_space(ax: plt.Axes,
                     means: pd.DataFrame,
                     f1_col: str,
                     f2_col: str,
                     speaker_col: str = 'speaker',
                     vowel_col: str = 'vowel',
                     title: Optional[str] = None) -> plt.Axes:
    """
    Draw per (speaker, vowel) means as a labelled F2 x F1 scatter.

    Both axes are inverted: higher F2 to the left, higher F1 downward.
    """
    sns.scatterplot(data=means, x=f2_col, y=f1_col, hue=speaker_col,
                    s=30, alpha=0.6, ax=ax, legend='brief')

    for _, row in means.iterrows():
        ax.text(row[f2_col], row[f1_col], str(row[vowel_col]),
                ha='center', va='bottom', fontsize=9)

    if not ax.xaxis_inverted():
        ax.invert_xaxis()
    if not ax.yaxis_inverted():
        ax.invert_yaxis()

    ax.set_xlabel(f2_col)
    ax.set_ylabel(f1_col)
    if title:
        ax.set_title(title)
    ax.grid(True, alpha=0.3)

    return ax


def plot_vowel_space(means: pd.DataFrame,
                     f1_col: str,
                     f2_col: str,
                     output_path: str,
                     speaker_col: str = 'speaker',
                     vowel_col: str = 'vowel',
                     title: Optional[str] = None,
                     dpi: int = 150) -> str:
    """
    Plot one vowel space and save it.

    Args:
        means: Table of (speaker, vowel, mean formant) rows
        f1_col: Column plotted on the (inverted) vertical axis
        f2_col: Column plotted on the (inverted) horizontal axis
        output_path: PNG path
        speaker_col: Speaker column, used for colour
        vowel_col: Vowel column, used for point labels
        title: Plot title
        dpi: Output resolution

    Returns:
        Path to saved plot
    """
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(10, 8))
    draw_vowel_space(ax, means, f1_col, f2_col, speaker_col, vowel_col, title)

    plt.tight_layout()
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Saved vowel space plot to {output_path}")
    return output_path


def plot_normalization_comparison(means: pd.DataFrame,
                                  suffixes: List[str],
                                  output_dir: str,
                                  formant_cols: List[str] = ['F1', 'F2'],
                                  speaker_col: str = 'speaker',
                                  vowel_col: str = 'vowel',
                                  dpi: int = 150) -> str:
    """
    Raw and normalized vowel spaces side by side.

    Args:
        means: Vowel means table holding raw and <formant>_<suffix> columns
        suffixes: Normalized column suffixes to include
        output_dir: Output directory for the plot
        formant_cols: [F1 column, F2 column]
        speaker_col: Speaker column
        vowel_col: Vowel column
        dpi: Output resolution

    Returns:
        Path to saved plot
    """
    f1_col, f2_col = formant_cols[:2]
    panels = [('raw', f1_col, f2_col)] + [
        (suffix, f'{f1_col}_{suffix}', f'{f2_col}_{suffix}') for suffix in suffixes
        if f'{f1_col}_{suffix}' in means.columns
    ]

    fig, axes = plt.subplots(1, len(panels), figsize=(6 * len(panels), 6), squeeze=False)

    for ax, (suffix, y_col, x_col) in zip(axes[0], panels):
        draw_vowel_space(ax, means, y_col, x_col, speaker_col, vowel_col,
                         METHOD_TITLES.get(suffix, suffix))

    plt.tight_layout()

    output_path = os.path.join(output_dir, 'normalization_comparison.png')
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Saved normalization comparison plot to {output_path}")
    return output_path


def generate_summary_report(summary: Dict[str, Any],
                            speaker_stats: pd.DataFrame,
                            config: Dict,
                            output_dir: str) -> str:
    """
    Generate text summary report.

    Args:
        summary: Run summary from create_summary_statistics
        speaker_stats: Per-speaker statistics table
        config: Configuration dictionary
        output_dir: Output directory

    Returns:
        Path to summary report
    """
    report_path = os.path.join(output_dir, 'summary_report.txt')

    with open(report_path, 'w') as f:
        f.write("=" * 80 + "\n")
        f.write("VOWEL NORMALIZATION PIPELINE - SUMMARY REPORT\n")
        f.write("=" * 80 + "\n\n")

        f.write(f"Methods: {', '.join(summary.get('methods', []))}\n")
        f.write(f"Tokens loaded: {summary['total_tokens']:,}\n")
        f.write(f"Tokens after outlier filter: {summary['tokens_after_outlier_filter']:,}\n")
        f.write(f"Tokens normalized: {summary['tokens_normalized']:,}\n")
        f.write(f"Retention rate: {summary['retention_rate']:.2%}\n\n")

        f.write("Retention by Speaker:\n")
        f.write("-" * 30 + "\n")
        for speaker, stats in summary.get('speaker_stats', {}).items():
            flag = "" if stats['normalized'] else "  [not normalized]"
            f.write(f"  {speaker}: {stats['kept']:,}/{stats['total']:,} "
                    f"({stats['retention_rate']:.1%}){flag}\n")
        f.write("\n")

        if len(speaker_stats) > 0:
            f.write("Speaker Statistics (after outlier filter):\n")
            f.write("-" * 40 + "\n")
            f.write(speaker_stats.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
            f.write("\n\n")

        outlier_config = config.get('outlier_detection', {})
        f.write("Configuration Used:\n")
        f.write("-" * 25 + "\n")
        f.write(f"Outlier filter enabled: {outlier_config.get('enabled', True)}\n")
        f.write(f"Outlier threshold: {outlier_config.get('threshold', 2.0)}\n")
        f.write(f"Small group policy: {outlier_config.get('small_group_policy', 'keep')}\n")
        f.write(f"Error policy: {config.get('normalization', {}).get('errors', 'raise')}\n")

    logger.info(f"Summary report saved to {report_path}")
    return report_path


def generate_analysis_reports(means: pd.DataFrame,
                              summary: Dict[str, Any],
                              speaker_stats: pd.DataFrame,
                              suffixes: List[str],
                              config: Dict,
                              output_dir: str) -> List[str]:
    """
    Generate all vowel space plots and the text summary.

    Failures are logged; reports never abort the pipeline.

    Args:
        means: Vowel means table (raw and normalized columns)
        summary: Run summary
        speaker_stats: Per-speaker statistics table
        suffixes: Normalized column suffixes to plot
        config: Configuration dictionary
        output_dir: Output directory for reports

    Returns:
        Paths of the files written
    """
    report_dir = os.path.join(output_dir, 'reports')
    Path(report_dir).mkdir(parents=True, exist_ok=True)

    logger.info(f"Generating analysis reports in {report_dir}")

    columns = config.get('columns', {})
    formant_cols = columns.get('formants', ['F1', 'F2'])
    speaker_col = columns.get('speaker', 'speaker')
    vowel_col = columns.get('vowel', 'vowel')
    dpi = config.get('reporting', {}).get('dpi', 150)

    f1_col, f2_col = formant_cols[:2]
    written = []

    try:
        # 1. One vowel space per method
        for suffix in ['raw'] + list(suffixes):
            y_col = f1_col if suffix == 'raw' else f'{f1_col}_{suffix}'
            x_col = f2_col if suffix == 'raw' else f'{f2_col}_{suffix}'
            if y_col not in means.columns:
                continue
            written.append(plot_vowel_space(
                means, y_col, x_col,
                os.path.join(report_dir, f'vowel_space_{suffix}.png'),
                speaker_col, vowel_col, METHOD_TITLES.get(suffix, suffix), dpi
            ))

        # 2. Side by side comparison
        if suffixes:
            written.append(plot_normalization_comparison(
                means, suffixes, report_dir, formant_cols, speaker_col, vowel_col, dpi
            ))

        # 3. Text summary
        written.append(generate_summary_report(summary, speaker_stats, config, report_dir))

        logger.info("Analysis reports generated successfully")

    except Exception as e:
        logger.error(f"Error generating analysis reports: {e}")

    return written
