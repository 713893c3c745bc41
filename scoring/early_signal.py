"""
Early Signal Score

Maps one repository's metric record to an integer score in [0, 100] plus a
labeled breakdown. Pure and deterministic: no I/O, no clock, no randomness.

Signals and default weights (must sum to 100%):
    Star velocity (7-day)              30%   log-normalised, 1,000 stars/week -> 100
    Contributor-to-star ratio          25%   linear, 0.2 contributors/star -> 100
    Fork-to-star ratio                 15%   linear, 0.4 forks/star -> 100
    Forum mention velocity             15%   log-normalised, weighted 7d/30d mix
    Commit frequency (30-day)          10%   log-normalised, 50 commits -> 100
    Star acceleration (week over week)  5%   log-normalised (ratio - 1), 0 unless accelerating
    Manipulation filter                      penalty 0-30, subtracted after weighting

The weight table and thresholds are configuration constants. They are
product-tuned and should be recalibrated against real data; changing them
is a reviewed code change.

Usage:
    from scoring.early_signal import MetricRecord, calculate_score

    result = calculate_score(MetricRecord(stars=9000, stars_7d=3000, ...))
    print(result.score, result.breakdown.to_dict())
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ScoringConfig:
    """Weights, normalisation scales and manipulation thresholds."""

    # Weights (fractions of 1.0)
    star_velocity_weight: float = 0.30
    contributor_ratio_weight: float = 0.25
    fork_ratio_weight: float = 0.15
    mention_velocity_weight: float = 0.15
    commit_frequency_weight: float = 0.10
    acceleration_weight: float = 0.05

    # Normalisation
    star_velocity_scale: float = 1000.0
    contributor_ratio_target: float = 0.2
    fork_ratio_target: float = 0.4
    mention_scale: float = 50.0
    mention_7d_multiplier: float = 2.0
    mention_30d_multiplier: float = 0.5
    commit_scale: float = 50.0
    # (ratio - 1) of 3.0, i.e. this week 4x last week, maps to 100
    acceleration_scale: float = 3.0

    # (min stars_7d exclusive, commits_30d below, penalty); first match wins
    star_spike_rules: Tuple[Tuple[int, int, int], ...] = (
        (500, 5, 20),
        (200, 2, 15),
        (100, 1, 10),
    )
    # (min stars exclusive, contributors below, penalty); first match wins
    thin_contributor_rules: Tuple[Tuple[int, int, int], ...] = (
        (1000, 2, 10),
        (500, 2, 5),
    )
    max_penalty: int = 30

    def __post_init__(self):
        total = sum(self.weights().values())
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.4f}")

    def weights(self) -> Dict[str, float]:
        return {
            "star_velocity": self.star_velocity_weight,
            "contributor_ratio": self.contributor_ratio_weight,
            "fork_ratio": self.fork_ratio_weight,
            "mention_velocity": self.mention_velocity_weight,
            "commit_frequency": self.commit_frequency_weight,
            "acceleration": self.acceleration_weight,
        }


DEFAULT_SCORING = ScoringConfig()


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class MetricRecord:
    """
    Everything the score looks at for one repository.

    ``stars_prev_7d`` is the star gain of the week before last; it is only
    known when snapshot history reaches back 14 days. When None the
    acceleration signal scores 0.
    """
    stars: float = 0
    stars_7d: float = 0
    stars_30d: float = 0
    contributors: float = 0
    forks: float = 0
    mentions_7d: float = 0
    mentions_30d: float = 0
    commits_30d: float = 0
    stars_prev_7d: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScoreBreakdown:
    """Per-signal sub-scores (0-100, rounded), penalty, raw and final score."""
    star_velocity_score: int
    contributor_ratio_score: int
    fork_ratio_score: int
    mention_velocity_score: int
    commit_frequency_score: int
    acceleration_score: int
    manipulation_penalty: int
    raw_score: int
    final_score: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ScoreResult:
    score: int
    breakdown: ScoreBreakdown


# =============================================================================
# NORMALISATION
# =============================================================================

def _non_negative(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or value < 0:
        return 0.0
    return value


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(high, max(low, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def log_normalise(value: float, scale: float) -> float:
    """log(value+1)/log(scale+1) * 100, clamped to [0, 100]; 0 for non-positive values."""
    if value <= 0 or scale <= 0:
        return 0.0
    if math.isinf(value):
        return 100.0
    return _clamp(math.log(value + 1) / math.log(scale + 1) * 100)


def linear_normalise(value: float, target: float) -> float:
    """value/target * 100, clamped to [0, 100]."""
    if target <= 0:
        return 0.0
    return _clamp(value / target * 100)


# =============================================================================
# SIGNALS
# =============================================================================

def star_velocity_signal(m: MetricRecord, config: ScoringConfig) -> float:
    return log_normalise(_non_negative(m.stars_7d), config.star_velocity_scale)


def contributor_ratio_signal(m: MetricRecord, config: ScoringConfig) -> float:
    """Builders before fans: contributors per star."""
    stars = _non_negative(m.stars)
    if stars <= 0:
        return 0.0
    return linear_normalise(_non_negative(m.contributors) / stars, config.contributor_ratio_target)


def fork_ratio_signal(m: MetricRecord, config: ScoringConfig) -> float:
    stars = _non_negative(m.stars)
    if stars <= 0:
        return 0.0
    return linear_normalise(_non_negative(m.forks) / stars, config.fork_ratio_target)


def mention_velocity_signal(m: MetricRecord, config: ScoringConfig) -> float:
    # Recent mentions count four times as much as older ones
    weighted = (
        _non_negative(m.mentions_7d) * config.mention_7d_multiplier
        + _non_negative(m.mentions_30d) * config.mention_30d_multiplier
    )
    return log_normalise(weighted, config.mention_scale)


def commit_frequency_signal(m: MetricRecord, config: ScoringConfig) -> float:
    return log_normalise(_non_negative(m.commits_30d), config.commit_scale)


def acceleration_signal(m: MetricRecord, config: ScoringConfig) -> float:
    """
    Week-over-week star acceleration.

    Only a ratio above 1 scores; flat or slowing growth scores exactly 0.
    Without a positive prior-week gain there is nothing to compare against.
    """
    if m.stars_prev_7d is None:
        return 0.0
    previous = _non_negative(m.stars_prev_7d)
    if previous <= 0:
        return 0.0
    ratio = _non_negative(m.stars_7d) / previous
    if ratio <= 1:
        return 0.0
    return log_normalise(ratio - 1, config.acceleration_scale)


def manipulation_penalty(m: MetricRecord, config: ScoringConfig = DEFAULT_SCORING) -> int:
    """
    Penalty for growth that activity does not explain.

    1. Large 7-day star gain with near-zero 30-day commits (graduated).
    2. Large total star count with fewer than 2 contributors (graduated).
    Rules add up, capped at ``max_penalty``.
    """
    stars = _non_negative(m.stars)
    stars_7d = _non_negative(m.stars_7d)
    commits = _non_negative(m.commits_30d)
    contributors = _non_negative(m.contributors)
    penalty = 0

    for min_gain, commits_below, points in config.star_spike_rules:
        if stars_7d > min_gain and commits < commits_below:
            penalty += points
            break

    for min_stars, contributors_below, points in config.thin_contributor_rules:
        if stars > min_stars and contributors < contributors_below:
            penalty += points
            break

    return min(config.max_penalty, penalty)


# =============================================================================
# SCORE
# =============================================================================

def calculate_score(metrics: MetricRecord, config: ScoringConfig = DEFAULT_SCORING) -> ScoreResult:
    """
    Score one metric record.

    Total for any non-negative input; negative, NaN or missing values are
    read as 0.
    """
    subscores = {
        "star_velocity": star_velocity_signal(metrics, config),
        "contributor_ratio": contributor_ratio_signal(metrics, config),
        "fork_ratio": fork_ratio_signal(metrics, config),
        "mention_velocity": mention_velocity_signal(metrics, config),
        "commit_frequency": commit_frequency_signal(metrics, config),
        "acceleration": acceleration_signal(metrics, config),
    }
    weights = config.weights()
    raw = sum(subscores[name] * weights[name] for name in subscores)

    penalty = manipulation_penalty(metrics, config)
    final = _round_half_up(_clamp(raw - penalty))

    breakdown = ScoreBreakdown(
        star_velocity_score=_round_half_up(subscores["star_velocity"]),
        contributor_ratio_score=_round_half_up(subscores["contributor_ratio"]),
        fork_ratio_score=_round_half_up(subscores["fork_ratio"]),
        mention_velocity_score=_round_half_up(subscores["mention_velocity"]),
        commit_frequency_score=_round_half_up(subscores["commit_frequency"]),
        acceleration_score=_round_half_up(subscores["acceleration"]),
        manipulation_penalty=penalty,
        raw_score=_round_half_up(raw),
        final_score=final,
    )
    return ScoreResult(score=final, breakdown=breakdown)
