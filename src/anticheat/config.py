"""
Anti-cheat thresholds and the drop-geometry plausibility model
"""

import math
from dataclasses import asdict, dataclass, fields


@dataclass
class AntiCheatConfig:
    """
    Tunables for plausibility checks and statistical anomaly detection.

    Attributes:
        plausibility_deviation_multiplier: Allowed drift from the expected bucket,
            as a fraction of the bucket count (0.4 = +/-40% of the board)
        plausibility_grace_period: Balls per session accepted unchecked
        statistical_sample_size: Rolling window size; analysis starts once full
        average_reward_threshold: Flag when recent average exceeds expected by this ratio
        high_value_hit_rate_threshold: Flag when recent high-value rate exceeds expected by this ratio
        high_value_reward_threshold: Base reward at or above which a bucket is high value
        suspicious_flags_before_reject: Cumulative flags that mark a session suspicious
        implausible_outcomes_before_flag: Implausible outcomes needed before the rate is checked
        implausible_rate_threshold: Session implausible rate that raises a flag
        max_balls_per_minute: Validated balls in the last 60 seconds before flagging
        enable_detailed_logging: Emit per-batch reports
        log_only_suspicious: Skip reports for clean batches
    """

    plausibility_deviation_multiplier: float = 0.4
    plausibility_grace_period: int = 10
    statistical_sample_size: int = 100
    average_reward_threshold: float = 2.5
    high_value_hit_rate_threshold: float = 3.0
    high_value_reward_threshold: int = 9
    suspicious_flags_before_reject: int = 20
    implausible_outcomes_before_flag: int = 5
    implausible_rate_threshold: float = 0.1
    max_balls_per_minute: int = 120
    enable_detailed_logging: bool = True
    log_only_suspicious: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "AntiCheatConfig":
        """Build from a config section, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)

    def plausible_bucket_range(
        self,
        drop_x: float,
        spawn_left: float,
        spawn_right: float,
        total_buckets: int,
    ) -> tuple[int, int]:
        """
        Bucket range a ball dropped at drop_x can reasonably reach.

        The drop position is normalized against the spawn width and projected
        onto the bucket row; the range extends total_buckets * multiplier
        buckets either side of that center.

        Returns:
            (min_bucket, max_bucket), both inclusive
        """
        spawn_width = spawn_right - spawn_left
        if spawn_width <= 0:
            spawn_width = 1.0

        normalized = (drop_x - spawn_left) / spawn_width
        normalized = max(0.0, min(1.0, normalized))

        center = normalized * (total_buckets - 1)
        deviation = total_buckets * self.plausibility_deviation_multiplier

        min_bucket = max(0, math.floor(center - deviation))
        max_bucket = min(total_buckets - 1, math.ceil(center + deviation))
        return min_bucket, max_bucket

    def is_bucket_plausible(
        self,
        drop_x: float,
        bucket_index: int,
        spawn_left: float,
        spawn_right: float,
        total_buckets: int,
    ) -> bool:
        min_bucket, max_bucket = self.plausible_bucket_range(
            drop_x, spawn_left, spawn_right, total_buckets
        )
        return min_bucket <= bucket_index <= max_bucket

    def describe(self) -> str:
        """One-line summary of the thresholds (for startup logs)"""
        return (
            f"PlausibilityDeviation={self.plausibility_deviation_multiplier:.0%}, "
            f"GracePeriod={self.plausibility_grace_period}, "
            f"SampleSize={self.statistical_sample_size}, "
            f"AvgThreshold={self.average_reward_threshold:.1f}x, "
            f"HVThreshold={self.high_value_hit_rate_threshold:.1f}x, "
            f"FlagsBeforeReject={self.suspicious_flags_before_reject}"
        )
