"""
Utility functions for loading, aggregation and visualization.
"""

from .data_utils import (
    load_vowel_data,
    read_vowel_file,
    select_columns,
    compute_vowel_means,
    compute_speaker_statistics,
    save_outputs,
    create_summary_statistics,
    save_summary
)

from .visualization import (
    plot_vowel_space,
    plot_normalization_comparison,
    generate_summary_report,
    generate_analysis_reports
)

__all__ = [
    'load_vowel_data',
    'read_vowel_file',
    'select_columns',
    'compute_vowel_means',
    'compute_speaker_statistics',
    'save_outputs',
    'create_summary_statistics',
    'save_summary',
    'plot_vowel_space',
    'plot_normalization_comparison',
    'generate_summary_report',
    'generate_analysis_reports'
]
