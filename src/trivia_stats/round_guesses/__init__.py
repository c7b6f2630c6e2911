"""Per-round guessed-year distributions."""

from .aggregator import RoundGuessAggregator, build_round_distributions, median_year

__all__ = ["RoundGuessAggregator", "build_round_distributions", "median_year"]
