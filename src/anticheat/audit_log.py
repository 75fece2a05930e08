"""
Anti-cheat audit logging

Multi-line reports for batch verdicts and session summaries. Reports that
end in a rejection (or a session with flags) are logged at WARNING;
everything else is INFO.
"""

import logging

from .config import AntiCheatConfig

logger = logging.getLogger(__name__)


class AntiCheatLogger:
    """Formats anti-cheat results into readable log reports"""

    def __init__(self, config: AntiCheatConfig, log: logging.Logger | None = None):
        self.config = config
        self.log = log or logger

    def log_batch_validation(self, batch, result, stats):
        """
        Log the per-batch anti-cheat report.

        Args:
            batch: RewardBatch that was checked
            result: BatchAntiCheatResult for the batch
            stats: PlayerAntiCheatStats after the batch was recorded
        """
        if not self.config.enable_detailed_logging:
            return

        if (
            self.config.log_only_suspicious
            and not result.is_suspicious
            and not result.implausible_entries
        ):
            return

        lines = [
            "=== Anti-Cheat Batch Validation ===",
            f"Player: {batch.player_id}",
            f"Batch: {batch.batch_id}",
            f"Entries: {len(batch.entries)}",
            f"Claimed Total: {batch.total_client_calculated_reward}",
        ]

        if result.implausible_entries:
            lines.append(f"Implausible Entries: {len(result.implausible_entries)}")
            for idx in result.implausible_entries:
                entry = batch.entries[idx]
                lines.append(
                    f"  [{idx}] dropX={entry.drop_position_x:.2f} -> "
                    f"bucket={entry.bucket_index} (reward={entry.reward_amount})"
                )

        if result.flags:
            lines.append("Flags:")
            lines.extend(f"  - {flag}" for flag in result.flags)

        if result.statistical_flags:
            lines.append("Statistical Flags:")
            lines.extend(f"  - {flag}" for flag in result.statistical_flags)

        lines.extend(
            [
                "--- Session Stats ---",
                f"Total Balls: {stats.total_balls_validated}",
                f"Avg Reward: {stats.average_reward:.1f}",
                f"High-Value Hits: {stats.high_value_hits} ({stats.high_value_hit_rate:.1%})",
                f"Implausible: {stats.implausible_outcomes} ({stats.implausible_rate:.1%})",
                f"Suspicious Flags: {stats.suspicious_flags}/"
                f"{self.config.suspicious_flags_before_reject}",
                f"Recent Avg: {stats.recent_average_reward:.1f}",
                f"Recent HV Rate: {stats.recent_high_value_hit_rate:.1%}",
            ]
        )

        if result.is_suspicious:
            lines.append("*** SESSION FLAGGED AS SUSPICIOUS ***")
        if result.should_reject:
            lines.append("*** BATCH SHOULD BE REJECTED ***")
        lines.append("================================")

        report = "\n".join(lines)
        if result.should_reject:
            self.log.warning(report)
        else:
            self.log.info(report)

    def log_suspicious_entry(self, player_id: str, entry, reason: str):
        if not self.config.enable_detailed_logging:
            return
        self.log.warning(
            f"[AntiCheat] Suspicious entry - Player: {player_id}, "
            f"dropX: {entry.drop_position_x:.2f}, bucket: {entry.bucket_index}, "
            f"reward: {entry.reward_amount}, reason: {reason}"
        )

    def log_rate_limit_warning(self, player_id: str, current_rate: int):
        self.log.warning(
            f"[AntiCheat] Rate limit warning - Player: {player_id}, "
            f"current: {current_rate}/min, max: {self.config.max_balls_per_minute}/min"
        )

    def log_session_summary(self, stats):
        if not self.config.enable_detailed_logging:
            return

        summary = stats.summary()
        report = "\n".join(
            [
                "=== Anti-Cheat Session Summary ===",
                f"Player: {summary.player_id}",
                f"Session: {summary.session_id}",
                f"Total Balls: {summary.total_balls}",
                f"Total Rewards: {summary.total_rewards}",
                f"Average Reward: {summary.average_reward:.1f}",
                f"High-Value Hits: {summary.high_value_hits} ({summary.high_value_rate:.2%})",
                f"Implausible Outcomes: {summary.implausible_count} "
                f"({summary.implausible_rate:.2%})",
                f"Suspicious Flags: {summary.suspicious_flags}",
                "=================================",
            ]
        )

        if summary.suspicious_flags > 0:
            self.log.warning(report)
        else:
            self.log.info(report)

    def log_configuration(self):
        if not self.config.enable_detailed_logging:
            return
        self.log.info(f"[AntiCheat] Config: {self.config.describe()}")
