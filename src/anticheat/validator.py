"""
Anti-Cheat Validator

Runs on the server after a batch has passed reward recomputation. Two layers:

1. Per-entry plausibility: does the landing bucket make sense for where the
   ball was dropped? Skipped during the per-session grace period.
2. Rolling-window statistics: once enough balls have been seen, compare the
   recent average reward, high-value hit rate, implausible rate and drop rate
   against a fair-board baseline. Each anomaly adds a suspicious flag; once a
   session crosses the flag threshold every later batch is rejected.

Stats are kept per (player, session) in a keyed store owned by this object.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from models.levels import DEFAULT_BUCKET_COUNT, LevelTable, map_bucket_index

from .audit_log import AntiCheatLogger
from .baseline import ExpectedStatsCache
from .config import AntiCheatConfig
from .stats import PlayerAntiCheatStats

logger = logging.getLogger(__name__)

# A batch this large where every entry is implausible is rejected outright
ALL_IMPLAUSIBLE_MIN_ENTRIES = 3

DEFAULT_SPAWN_LEFT = -2.5
DEFAULT_SPAWN_RIGHT = 2.5


@dataclass
class EntryValidationResult:
    is_plausible: bool = True
    is_high_value: bool = False
    flags: list[str] = field(default_factory=list)
    expected_bucket_range: tuple[int, int] | None = None


@dataclass
class StatisticalAnalysisResult:
    is_suspicious: bool = False
    insufficient_data: bool = False
    total_flags: int = 0
    flags_until_reject: int = 0
    flags: list[str] = field(default_factory=list)


@dataclass
class BatchAntiCheatResult:
    implausible_entries: list[int] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    statistical_flags: list[str] = field(default_factory=list)
    is_suspicious: bool = False
    should_reject: bool = False

    @property
    def all_flags(self) -> list[str]:
        return self.flags + self.statistical_flags


def stats_key(player_id: str, session_id: str) -> str:
    return f"{player_id}:{session_id}"


class AntiCheatValidator:
    """
    Plausibility and statistical anomaly detection for reward batches.

    Args:
        config: Thresholds (defaults to AntiCheatConfig())
        levels: Level reward tables used for high-value classification and baselines
        clock: Monotonic seconds source used to time-stamp validated drops
    """

    def __init__(
        self,
        config: AntiCheatConfig | None = None,
        levels: LevelTable | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.config = config or AntiCheatConfig()
        self.levels = levels or LevelTable.default()
        self._clock = clock or time.monotonic
        self._player_stats: dict[str, PlayerAntiCheatStats] = {}
        self._baselines = ExpectedStatsCache(self.levels, self.config.high_value_reward_threshold)
        self.audit = AntiCheatLogger(self.config)

        self.spawn_left = DEFAULT_SPAWN_LEFT
        self.spawn_right = DEFAULT_SPAWN_RIGHT

    def set_spawn_boundaries(self, left: float, right: float):
        self.spawn_left = left
        self.spawn_right = right

    # ========== Stats store ==========

    def get_or_create_player_stats(self, player_id: str, session_id: str) -> PlayerAntiCheatStats:
        key = stats_key(player_id, session_id)
        stats = self._player_stats.get(key)
        if stats is None:
            stats = PlayerAntiCheatStats(
                player_id, session_id, window_size=self.config.statistical_sample_size
            )
            self._player_stats[key] = stats
        return stats

    def get_player_stats(self, player_id: str, session_id: str) -> PlayerAntiCheatStats | None:
        return self._player_stats.get(stats_key(player_id, session_id))

    def clear_player_stats(self, player_id: str, session_id: str):
        self._player_stats.pop(stats_key(player_id, session_id), None)

    def end_session(self, player_id: str, session_id: str):
        """Log the session summary (if any stats exist) and drop the stats"""
        stats = self._player_stats.pop(stats_key(player_id, session_id), None)
        if stats is not None:
            self.audit.log_session_summary(stats)

    @property
    def tracked_sessions(self) -> int:
        return len(self._player_stats)

    # ========== Validation ==========

    def validate_entry(self, entry, stats: PlayerAntiCheatStats) -> EntryValidationResult:
        """Classify one entry and record it in the session stats"""
        result = EntryValidationResult()

        total_buckets = (
            entry.total_bucket_count if entry.total_bucket_count > 0 else DEFAULT_BUCKET_COUNT
        )

        level_config = self.levels.get(entry.level)
        if level_config.buckets:
            table_index = map_bucket_index(
                entry.bucket_index, total_buckets, level_config.bucket_count
            )
            base_reward = level_config.buckets[table_index].base_reward
            result.is_high_value = base_reward >= self.config.high_value_reward_threshold

        if stats.total_balls_validated >= self.config.plausibility_grace_period:
            plausible = self.config.is_bucket_plausible(
                entry.drop_position_x,
                entry.bucket_index,
                self.spawn_left,
                self.spawn_right,
                total_buckets,
            )
            if not plausible:
                result.is_plausible = False
                result.flags.append(
                    f"Implausible: dropX={entry.drop_position_x:.2f} -> bucket={entry.bucket_index}"
                )
                result.expected_bucket_range = self.config.plausible_bucket_range(
                    entry.drop_position_x, self.spawn_left, self.spawn_right, total_buckets
                )
                self.audit.log_suspicious_entry(
                    stats.player_id, entry, f"expected buckets {result.expected_bucket_range}"
                )

        stats.record_outcome(
            entry.bucket_index,
            entry.reward_amount,
            result.is_plausible,
            result.is_high_value,
            entry.drop_position_x,
            level=entry.level,
        )
        stats.record_drop_timestamp(self._clock())

        return result

    def analyze_statistics(self, stats: PlayerAntiCheatStats) -> StatisticalAnalysisResult:
        """Compare the rolling window against the fair-board baseline"""
        result = StatisticalAnalysisResult()
        cfg = self.config

        if not stats.has_sufficient_data(cfg.statistical_sample_size):
            result.insufficient_data = True
            result.total_flags = stats.suspicious_flags
            result.flags_until_reject = max(
                0, cfg.suspicious_flags_before_reject - stats.suspicious_flags
            )
            return result

        expected = self._baselines.for_outcomes([o.level for o in stats.recent_outcomes])

        recent_avg = stats.recent_average_reward
        expected_avg = expected.expected_average_reward
        avg_ratio = recent_avg / expected_avg if expected_avg > 0 else 0.0
        if avg_ratio > cfg.average_reward_threshold:
            result.flags.append(
                f"High avg reward: {recent_avg:.1f} ({avg_ratio:.1f}x expected {expected_avg:.1f})"
            )
            stats.add_suspicious_flag("HighAvgReward")

        recent_hv = stats.recent_high_value_hit_rate
        expected_hv = expected.expected_high_value_rate
        hv_ratio = recent_hv / expected_hv if expected_hv > 0 else 0.0
        if hv_ratio > cfg.high_value_hit_rate_threshold:
            result.flags.append(
                f"High jackpot rate: {recent_hv:.1%} ({hv_ratio:.1f}x expected {expected_hv:.1%})"
            )
            stats.add_suspicious_flag("HighJackpotRate")

        if stats.implausible_outcomes >= cfg.implausible_outcomes_before_flag:
            implausible_rate = stats.implausible_rate
            if implausible_rate > cfg.implausible_rate_threshold:
                result.flags.append(
                    f"High implausible rate: {implausible_rate:.1%} "
                    f"({stats.implausible_outcomes} outcomes)"
                )
                stats.add_suspicious_flag("HighImplausibleRate")

        if stats.is_rate_limit_exceeded(cfg.max_balls_per_minute):
            result.flags.append(
                f"Rate limit exceeded: {stats.current_balls_per_minute}/min "
                f"(max: {cfg.max_balls_per_minute})"
            )
            stats.add_suspicious_flag("RateLimitExceeded")
            self.audit.log_rate_limit_warning(stats.player_id, stats.current_balls_per_minute)

        result.is_suspicious = stats.suspicious_flags >= cfg.suspicious_flags_before_reject
        result.total_flags = stats.suspicious_flags
        result.flags_until_reject = max(
            0, cfg.suspicious_flags_before_reject - stats.suspicious_flags
        )
        return result

    def validate_batch(self, batch, session_id: str) -> BatchAntiCheatResult:
        """
        Run both layers over a batch.

        Every entry is recorded in the session stats, whether or not the
        batch is ultimately rejected.
        """
        stats = self.get_or_create_player_stats(batch.player_id, session_id)
        result = BatchAntiCheatResult()

        for i, entry in enumerate(batch.entries):
            entry_result = self.validate_entry(entry, stats)
            if not entry_result.is_plausible:
                result.implausible_entries.append(i)
                result.flags.extend(entry_result.flags)

        stats_result = self.analyze_statistics(stats)
        result.statistical_flags = stats_result.flags
        result.is_suspicious = stats_result.is_suspicious

        entry_count = len(batch.entries)
        result.should_reject = result.is_suspicious or (
            entry_count >= ALL_IMPLAUSIBLE_MIN_ENTRIES
            and len(result.implausible_entries) == entry_count
        )

        self.audit.log_batch_validation(batch, result, stats)
        return result
