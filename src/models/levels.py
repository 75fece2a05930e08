"""
Board level tables

A level is an ordered list of bucket base rewards plus a multiplier. The
board and the table may disagree on bucket count (e.g. a board built with a
different peg layout), in which case bucket indices are mapped
proportionally onto the table.
"""

from dataclasses import dataclass, field

DEFAULT_BUCKET_COUNT = 13

# Symmetric tables: edges pay the most, the center the least
DEFAULT_LEVELS = [
    {"rewards": [100, 25, 15, 10, 5, 2, 1, 2, 5, 10, 15, 25, 100], "multiplier": 1.0},
    {"rewards": [100, 25, 15, 10, 5, 2, 1, 2, 5, 10, 15, 25, 100], "multiplier": 2.0},
    {"rewards": [100, 25, 15, 10, 5, 2, 1, 2, 5, 10, 15, 25, 100], "multiplier": 3.0},
    {
        "rewards": [250, 60, 25, 15, 10, 5, 2, 1, 1, 1, 2, 5, 10, 15, 25, 60, 250],
        "multiplier": 2.0,
    },
]


def map_bucket_index(index: int, actual_count: int, config_count: int) -> int:
    """
    Map a board bucket index onto a table with a different bucket count.

    Args:
        index: Bucket index on the board
        actual_count: Number of buckets on the board
        config_count: Number of buckets in the level table

    Returns:
        Index into the level table, clamped to [0, config_count - 1]
    """
    if actual_count == config_count:
        return index
    if actual_count <= 1 or config_count <= 1:
        return 0
    ratio = index / (actual_count - 1)
    mapped = round(ratio * (config_count - 1))
    return max(0, min(config_count - 1, mapped))


@dataclass(frozen=True)
class BucketConfig:
    """Single bucket in a level table"""

    base_reward: int

    def reward(self, multiplier: float) -> int:
        return int(self.base_reward * multiplier)


@dataclass(frozen=True)
class LevelConfig:
    """
    Reward table for one board level.

    Attributes:
        level: Level number (0-based)
        buckets: Buckets left to right
        multiplier: Applied to every base reward on this level
    """

    level: int
    buckets: tuple[BucketConfig, ...] = field(default_factory=tuple)
    multiplier: float = 1.0

    @classmethod
    def from_rewards(cls, level: int, rewards, multiplier: float = 1.0) -> "LevelConfig":
        return cls(
            level=level,
            buckets=tuple(BucketConfig(int(r)) for r in rewards),
            multiplier=float(multiplier),
        )

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)

    def base_reward_for(self, bucket_index: int, total_bucket_count: int) -> int:
        """Base reward for a board bucket, mapped onto this table"""
        if not self.buckets:
            return 0
        mapped = map_bucket_index(bucket_index, total_bucket_count, self.bucket_count)
        return self.buckets[mapped].base_reward

    def expected_reward(self, bucket_index: int, total_bucket_count: int) -> int:
        """Reward the server will accept for a ball landing in this bucket"""
        return int(self.base_reward_for(bucket_index, total_bucket_count) * self.multiplier)

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "rewards": [b.base_reward for b in self.buckets],
            "multiplier": self.multiplier,
        }


class LevelTable:
    """
    Read-only lookup from level number to reward table.

    Lookups outside the defined range clamp to the nearest defined level.
    """

    def __init__(self, levels: list[LevelConfig]):
        if not levels:
            raise ValueError("LevelTable requires at least one level")
        self._levels = sorted(levels, key=lambda lc: lc.level)

    @classmethod
    def from_config(cls, level_defs: list[dict]) -> "LevelTable":
        """Build from config dicts of the form {'rewards': [...], 'multiplier': x}"""
        return cls(
            [
                LevelConfig.from_rewards(i, d["rewards"], d.get("multiplier", 1.0))
                for i, d in enumerate(level_defs)
            ]
        )

    @classmethod
    def default(cls) -> "LevelTable":
        return cls.from_config(DEFAULT_LEVELS)

    def get(self, level: int) -> LevelConfig:
        index = max(0, min(len(self._levels) - 1, level))
        return self._levels[index]

    def __len__(self) -> int:
        return len(self._levels)

    def __iter__(self):
        return iter(self._levels)
