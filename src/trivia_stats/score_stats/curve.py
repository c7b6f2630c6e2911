"""Percentile ranks and display curves over a score histogram.

Curve strategy: bucketed selection. Every curve point is a real histogram
bucket (score, count, cumulative percentile); no smoothing is applied. The
kernel-density alternative is intentionally not offered behind this interface.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Mapping, Sequence

from trivia_stats.models import CurvePoint, ProcessedDistribution


CURVE_STRATEGY = "bucketed"
DOMAIN_MIN_SCORE = 0
DOMAIN_MAX_SCORE = 5000
DEFAULT_POINT_COUNT = 15
MIN_POINT_COUNT = 2
MAX_POINT_COUNT = 100
MAX_DISPLAYED_RANK = 50


@dataclass(frozen=True)
class _Bucket:
    score: int
    count: int
    cumulative: int
    percentile: int

    def as_point(self) -> CurvePoint:
        return CurvePoint(score=self.score, count=self.count, percentile=self.percentile)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentile_rank(histogram: Mapping[int, int], score: int) -> int | None:
    """Return the "top X%" rank of ``score``, or None outside the top half.

    Ties count half: ``raw = round((below + equal / 2) / total * 100)`` and the
    displayed rank is ``100 - raw``.
    """
    total = sum(count for count in histogram.values() if count > 0)
    if total <= 0:
        return None
    below = sum(count for value, count in histogram.items() if value < score and count > 0)
    equal = max(0, int(histogram.get(score, 0)))
    raw = round_half_up(((below + equal / 2) / total) * 100)
    displayed = 100 - raw
    if displayed > MAX_DISPLAYED_RANK:
        return None
    return displayed


def baseline_distribution(
    *,
    domain_min: int = DOMAIN_MIN_SCORE,
    domain_max: int = DOMAIN_MAX_SCORE,
) -> ProcessedDistribution:
    return ProcessedDistribution(
        curve_points=(
            CurvePoint(score=domain_min, count=0, percentile=0),
            CurvePoint(score=domain_max, count=0, percentile=100),
        ),
        total_participants=0,
        min_score=0,
        max_score=0,
        median_score=0,
        percentile_rank=None,
        strategy=CURVE_STRATEGY,
    )


def synthesize(
    histogram: Mapping[int, int],
    *,
    user_score: int | None = None,
    point_count: int = DEFAULT_POINT_COUNT,
    domain_min: int = DOMAIN_MIN_SCORE,
    domain_max: int = DOMAIN_MAX_SCORE,
) -> ProcessedDistribution:
    """Build the processed distribution for ``histogram`` ({score: count})."""
    target = max(MIN_POINT_COUNT, int(point_count))
    buckets = _cumulative_buckets(histogram)
    if not buckets:
        return baseline_distribution(domain_min=domain_min, domain_max=domain_max)

    total = buckets[-1].cumulative
    median_threshold = total // 2
    median_score = next(bucket.score for bucket in buckets if bucket.cumulative >= median_threshold)
    rank = percentile_rank(histogram, user_score) if user_score is not None else None

    points = _select_points(buckets, target)
    return ProcessedDistribution(
        curve_points=tuple(bucket.as_point() for bucket in points),
        total_participants=total,
        min_score=buckets[0].score,
        max_score=buckets[-1].score,
        median_score=median_score,
        percentile_rank=rank,
        strategy=CURVE_STRATEGY,
    )


def _cumulative_buckets(histogram: Mapping[int, int]) -> list[_Bucket]:
    ordered = sorted((int(score), int(count)) for score, count in histogram.items() if int(count) > 0)
    total = sum(count for _, count in ordered)
    if total == 0:
        return []
    buckets: list[_Bucket] = []
    running = 0
    for score, count in ordered:
        running += count
        buckets.append(
            _Bucket(
                score=score,
                count=count,
                cumulative=running,
                percentile=round_half_up((running / total) * 100),
            )
        )
    return buckets


def _select_points(buckets: Sequence[_Bucket], target: int) -> list[_Bucket]:
    if len(buckets) <= target:
        return list(buckets)

    chosen: dict[int, _Bucket] = {buckets[0].score: buckets[0], buckets[-1].score: buckets[-1]}
    for step in range(1, target - 1):
        goal = 100 * step / (target - 1)
        closest = min(buckets, key=lambda bucket: abs(bucket.percentile - goal))
        chosen.setdefault(closest.score, closest)

    points = sorted(chosen.values(), key=lambda bucket: bucket.score)
    if len(points) < target:
        points = _fill_gaps(points, buckets, target)
    return _fit_to_count(points, target)


def _fill_gaps(points: list[_Bucket], buckets: Sequence[_Bucket], target: int) -> list[_Bucket]:
    """Insert real buckets at the midpoints of the widest gaps until ``target``."""
    points = list(points)
    while len(points) < target:
        gaps = sorted(
            range(len(points) - 1),
            key=lambda idx: points[idx + 1].score - points[idx].score,
            reverse=True,
        )
        inserted = False
        for idx in gaps:
            left, right = points[idx], points[idx + 1]
            inside = [bucket for bucket in buckets if left.score < bucket.score < right.score]
            if not inside:
                continue
            midpoint = (left.score + right.score) // 2
            closest = min(inside, key=lambda bucket: abs(bucket.score - midpoint))
            points.insert(idx + 1, closest)
            inserted = True
            break
        if not inserted:
            break
    return points


def _fit_to_count(points: list[_Bucket], target: int) -> list[_Bucket]:
    """Drop interior points that best match their neighbours' interpolation."""
    points = list(points)
    while len(points) > target and len(points) > 2:
        best_idx = 1
        best_deviation = math.inf
        for idx in range(1, len(points) - 1):
            prev, point, nxt = points[idx - 1], points[idx], points[idx + 1]
            ratio = (point.score - prev.score) / (nxt.score - prev.score)
            expected = prev.count + ratio * (nxt.count - prev.count)
            deviation = abs(point.count - expected)
            if deviation < best_deviation:
                best_idx = idx
                best_deviation = deviation
        del points[best_idx]
    return points
