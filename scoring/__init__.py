"""
Scoring package for Repo Discovery.

Provides the Early Signal Score: a pure mapping from a repository's metric
record to a 0-100 score and a labeled breakdown.
"""

from scoring.early_signal import (
    DEFAULT_SCORING,
    MetricRecord,
    ScoreBreakdown,
    ScoreResult,
    ScoringConfig,
    calculate_score,
)

__all__ = [
    "DEFAULT_SCORING",
    "MetricRecord",
    "ScoreBreakdown",
    "ScoreResult",
    "ScoringConfig",
    "calculate_score",
]
