"""Score histogram accumulation and percentile curve synthesis."""

from .accumulator import ScoreStatsAccumulator, validate_score
from .curve import CURVE_STRATEGY, baseline_distribution, percentile_rank, synthesize

__all__ = [
    "CURVE_STRATEGY",
    "ScoreStatsAccumulator",
    "baseline_distribution",
    "percentile_rank",
    "synthesize",
    "validate_score",
]
