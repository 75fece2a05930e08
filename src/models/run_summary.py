"""
Run Summary data model
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunSummary:
    """
    Per-run accounting shown at the end of a session

    Points move from earned -> pending -> verified or rejected. Retrying
    batches are still counted as pending.

    Attributes:
        total_points_earned: Sum of client-side rewards scored this run
        verified_points: Sum credited by the server
        pending_points: Claimed but not yet verified (snapshot)
        rejected_ball_count: Entries refused by the server
        rejected_points: Points refused by the server
        retrying_batch_count: Batches waiting in the failed list (snapshot)
        retrying_points: Claimed total of those batches (snapshot)
    """

    total_points_earned: int = 0
    verified_points: int = 0
    pending_points: int = 0
    rejected_ball_count: int = 0
    rejected_points: int = 0
    retrying_batch_count: int = 0
    retrying_points: int = 0
    total_balls_dropped: int = 0
    balls_scored: int = 0
    highest_level_reached: int = 0
    run_start_time: datetime = field(default_factory=_utcnow)
    run_end_time: datetime | None = None

    def reset(self):
        self.total_points_earned = 0
        self.verified_points = 0
        self.pending_points = 0
        self.rejected_ball_count = 0
        self.rejected_points = 0
        self.retrying_batch_count = 0
        self.retrying_points = 0
        self.total_balls_dropped = 0
        self.balls_scored = 0
        self.highest_level_reached = 0
        self.run_start_time = _utcnow()
        self.run_end_time = None

    def on_ball_dropped(self):
        self.total_balls_dropped += 1

    def on_ball_scored(self, reward: int):
        self.balls_scored += 1
        self.total_points_earned += reward

    def on_level_reached(self, level: int):
        if level > self.highest_level_reached:
            self.highest_level_reached = level

    def on_batch_validated(self, verified_amount: int):
        self.verified_points += verified_amount

    def on_batch_rejected(self, rejected_entry_count: int, rejected_amount: int):
        self.rejected_ball_count += rejected_entry_count
        self.rejected_points += rejected_amount

    def update_pending_points(self, pending: int):
        self.pending_points = pending

    def update_retrying_batches(self, count: int, points: int):
        self.retrying_batch_count = count
        self.retrying_points = points

    def finalize_run(self, end_time: datetime | None = None):
        self.run_end_time = end_time or _utcnow()

    @property
    def run_duration(self) -> timedelta:
        if self.run_end_time is not None and self.run_end_time > self.run_start_time:
            return self.run_end_time - self.run_start_time
        return _utcnow() - self.run_start_time

    @property
    def accounted_points(self) -> int:
        return self.verified_points + self.pending_points + self.rejected_points

    @property
    def unaccounted_points(self) -> int:
        """Earned points not yet verified, pending or rejected (0 when settled)"""
        return self.total_points_earned - self.accounted_points

    @property
    def has_rejections(self) -> bool:
        return self.rejected_ball_count > 0

    @property
    def has_retrying_batches(self) -> bool:
        return self.retrying_batch_count > 0

    def to_dict(self) -> dict:
        return {
            "total_points_earned": self.total_points_earned,
            "verified_points": self.verified_points,
            "pending_points": self.pending_points,
            "rejected_ball_count": self.rejected_ball_count,
            "rejected_points": self.rejected_points,
            "retrying_batch_count": self.retrying_batch_count,
            "retrying_points": self.retrying_points,
            "total_balls_dropped": self.total_balls_dropped,
            "balls_scored": self.balls_scored,
            "highest_level_reached": self.highest_level_reached,
            "run_duration_seconds": self.run_duration.total_seconds(),
        }
