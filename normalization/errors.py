"""
Exceptions raised by the normalization and outlier modules.
"""

from typing import Optional


class NormalizationError(ValueError):
    """Base class for failures affecting a single speaker or group."""

    def __init__(self, message: str, speaker: Optional[str] = None):
        super().__init__(message)
        self.speaker = speaker


class InvalidInputError(NormalizationError):
    """Missing required column, missing value or non-positive formant."""


class DegenerateGroupError(NormalizationError):
    """Zero variance or too few observations for a statistic."""


class InsufficientDataError(NormalizationError):
    """Too few vowel classes or tokens to define triangle points."""


class JoinCardinalityError(NormalizationError):
    """Scaler table has zero or more than one row for a speaker key."""
