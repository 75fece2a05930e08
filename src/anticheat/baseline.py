"""
Expected-value baseline for a fair board.

A ball crossing n peg rows lands in bucket k with probability
C(n, k) / 2**n, so a level's expected reward and high-value hit rate follow
directly from its reward table. Each level's baseline is computed once and
cached.
"""

import math
from dataclasses import dataclass

from models.levels import LevelConfig, LevelTable

# Used when a level has no buckets to avoid dividing by zero downstream
FALLBACK_AVERAGE_REWARD = 1.0
FALLBACK_HIGH_VALUE_RATE = 0.01


@dataclass(frozen=True)
class ExpectedStats:
    expected_average_reward: float
    expected_high_value_rate: float


def bucket_probabilities(bucket_count: int) -> list[float]:
    """Binomial landing probability for each of bucket_count buckets"""
    if bucket_count <= 0:
        return []
    n = bucket_count - 1
    return [math.comb(n, k) / (2**n) for k in range(bucket_count)]


def compute_expected_stats(level_config: LevelConfig, high_value_threshold: int) -> ExpectedStats:
    """Expected average reward and high-value rate for one level"""
    if not level_config.buckets:
        return ExpectedStats(FALLBACK_AVERAGE_REWARD, FALLBACK_HIGH_VALUE_RATE)

    weighted_reward = 0.0
    total_prob = 0.0
    high_value_prob = 0.0
    for bucket, prob in zip(level_config.buckets, bucket_probabilities(level_config.bucket_count)):
        weighted_reward += prob * bucket.base_reward * level_config.multiplier
        total_prob += prob
        if bucket.base_reward >= high_value_threshold:
            high_value_prob += prob

    return ExpectedStats(
        expected_average_reward=weighted_reward / total_prob,
        expected_high_value_rate=high_value_prob,
    )


class ExpectedStatsCache:
    """Per-level baselines, computed on first use"""

    def __init__(self, levels: LevelTable, high_value_threshold: int):
        self._levels = levels
        self._high_value_threshold = high_value_threshold
        self._cache: dict[int, ExpectedStats] = {}

    def for_level(self, level: int) -> ExpectedStats:
        level_config = self._levels.get(level)
        stats = self._cache.get(level_config.level)
        if stats is None:
            stats = compute_expected_stats(level_config, self._high_value_threshold)
            self._cache[level_config.level] = stats
        return stats

    def for_outcomes(self, levels: list[int]) -> ExpectedStats:
        """
        Baseline for a mix of levels (mean of each outcome's level baseline).

        Keeps the comparison fair when the rolling window spans a level change
        with a different multiplier.
        """
        if not levels:
            return self.for_level(0)
        per_outcome = [self.for_level(level) for level in levels]
        return ExpectedStats(
            expected_average_reward=sum(s.expected_average_reward for s in per_outcome)
            / len(per_outcome),
            expected_high_value_rate=sum(s.expected_high_value_rate for s in per_outcome)
            / len(per_outcome),
        )
