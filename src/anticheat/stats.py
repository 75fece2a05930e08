"""
Per-player, per-session anti-cheat statistics

Tracks cumulative counters for the whole session plus a rolling window of
recent outcomes, so a sustained anomaly shows up even when a long clean
history would mask it in the all-time averages.
"""

import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

RATE_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class BallOutcome:
    """One validated ball, as seen by the anti-cheat engine"""

    bucket_index: int
    reward: int
    is_plausible: bool
    is_high_value: bool
    drop_x: float
    level: int = 0


@dataclass
class AntiCheatStatsSummary:
    """Snapshot for logging and analysis"""

    player_id: str = ""
    session_id: str = ""
    total_balls: int = 0
    total_rewards: int = 0
    average_reward: float = 0.0
    high_value_hits: int = 0
    high_value_rate: float = 0.0
    implausible_count: int = 0
    implausible_rate: float = 0.0
    suspicious_flags: int = 0
    recent_avg_reward: float = 0.0
    recent_high_value_rate: float = 0.0
    balls_per_minute: int = 0
    flag_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class PlayerAntiCheatStats:
    """
    Statistics for one player within one session.

    Suspicious flags only ever accumulate; there is no decay within a session.
    """

    def __init__(self, player_id: str, session_id: str, window_size: int = 100):
        self.player_id = player_id
        self.session_id = session_id
        self.session_start_time = datetime.now(timezone.utc)
        self.window_size = window_size

        # Session counters
        self.total_balls_validated = 0
        self.total_rewards_earned = 0
        self.high_value_hits = 0
        self.implausible_outcomes = 0
        self.suspicious_flags = 0

        self._recent_outcomes: deque[BallOutcome] = deque(maxlen=max(1, window_size))
        self._drop_timestamps: deque[float] = deque()
        self._bucket_hit_counts: Counter = Counter()
        self._flag_reasons: Counter = Counter()

    def record_outcome(
        self,
        bucket_index: int,
        reward: int,
        is_plausible: bool,
        is_high_value: bool,
        drop_x: float,
        level: int = 0,
    ):
        """Record a ball outcome for statistical tracking"""
        self.total_balls_validated += 1
        self.total_rewards_earned += reward

        if is_high_value:
            self.high_value_hits += 1
        if not is_plausible:
            self.implausible_outcomes += 1

        self._bucket_hit_counts[bucket_index] += 1
        self._recent_outcomes.append(
            BallOutcome(
                bucket_index=bucket_index,
                reward=reward,
                is_plausible=is_plausible,
                is_high_value=is_high_value,
                drop_x=drop_x,
                level=level,
            )
        )

    def record_drop_timestamp(self, timestamp: float | None = None):
        """Record a drop time (seconds) and forget drops older than 60 seconds"""
        if timestamp is None:
            timestamp = time.monotonic()
        self._drop_timestamps.append(timestamp)

        cutoff = timestamp - RATE_WINDOW_SECONDS
        while self._drop_timestamps and self._drop_timestamps[0] < cutoff:
            self._drop_timestamps.popleft()

    def add_suspicious_flag(self, reason: str | None = None):
        self.suspicious_flags += 1
        if reason:
            self._flag_reasons[reason] += 1

    # ========== All-time rates ==========

    @property
    def average_reward(self) -> float:
        if self.total_balls_validated == 0:
            return 0.0
        return self.total_rewards_earned / self.total_balls_validated

    @property
    def high_value_hit_rate(self) -> float:
        if self.total_balls_validated == 0:
            return 0.0
        return self.high_value_hits / self.total_balls_validated

    @property
    def implausible_rate(self) -> float:
        if self.total_balls_validated == 0:
            return 0.0
        return self.implausible_outcomes / self.total_balls_validated

    # ========== Rate limiting ==========

    @property
    def current_balls_per_minute(self) -> int:
        return len(self._drop_timestamps)

    def is_rate_limit_exceeded(self, max_balls_per_minute: int) -> bool:
        return self.current_balls_per_minute > max_balls_per_minute

    # ========== Rolling window ==========

    @property
    def recent_outcomes(self) -> list[BallOutcome]:
        return list(self._recent_outcomes)

    @property
    def recent_count(self) -> int:
        return len(self._recent_outcomes)

    @property
    def recent_average_reward(self) -> float:
        if not self._recent_outcomes:
            return 0.0
        return sum(o.reward for o in self._recent_outcomes) / len(self._recent_outcomes)

    @property
    def recent_high_value_hit_rate(self) -> float:
        if not self._recent_outcomes:
            return 0.0
        hits = sum(1 for o in self._recent_outcomes if o.is_high_value)
        return hits / len(self._recent_outcomes)

    @property
    def recent_implausible_rate(self) -> float:
        if not self._recent_outcomes:
            return 0.0
        misses = sum(1 for o in self._recent_outcomes if not o.is_plausible)
        return misses / len(self._recent_outcomes)

    def bucket_distribution(self) -> dict[int, float]:
        """Fraction of all validated balls that landed in each bucket"""
        if self.total_balls_validated == 0:
            return {}
        return {
            bucket: hits / self.total_balls_validated
            for bucket, hits in sorted(self._bucket_hit_counts.items())
        }

    def has_sufficient_data(self, min_sample_size: int) -> bool:
        return len(self._recent_outcomes) >= min_sample_size

    def summary(self) -> AntiCheatStatsSummary:
        return AntiCheatStatsSummary(
            player_id=self.player_id,
            session_id=self.session_id,
            total_balls=self.total_balls_validated,
            total_rewards=self.total_rewards_earned,
            average_reward=self.average_reward,
            high_value_hits=self.high_value_hits,
            high_value_rate=self.high_value_hit_rate,
            implausible_count=self.implausible_outcomes,
            implausible_rate=self.implausible_rate,
            suspicious_flags=self.suspicious_flags,
            recent_avg_reward=self.recent_average_reward,
            recent_high_value_rate=self.recent_high_value_hit_rate,
            balls_per_minute=self.current_balls_per_minute,
            flag_reasons=dict(self._flag_reasons),
        )
