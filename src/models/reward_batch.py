"""
Reward entry and reward batch data models
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .enums import BatchStatus


@dataclass(frozen=True)
class RewardEntry:
    """
    One scored ball, as claimed by the client.

    Attributes:
        ball_index: Per-session ball sequence number (de-dup key on the server)
        bucket_index: Bucket the ball landed in, as seen by the board
        total_bucket_count: Number of buckets on the board at scoring time
        reward_amount: Reward the client calculated for this ball
        level: Board level the ball was spawned on
        drop_position_x: Horizontal spawn position of the ball
    """

    ball_index: int
    bucket_index: int
    total_bucket_count: int
    reward_amount: int
    level: int
    drop_position_x: float

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "ball_index": self.ball_index,
            "bucket_index": self.bucket_index,
            "total_bucket_count": self.total_bucket_count,
            "reward_amount": self.reward_amount,
            "level": self.level,
            "drop_position_x": self.drop_position_x,
        }


@dataclass
class RewardBatch:
    """
    A group of reward entries submitted to the server as one unit.

    Entries are append-only and the claimed total is maintained
    incrementally, so it always equals the sum of entry rewards.
    """

    player_id: str
    session_id: str
    game_seed: str
    starting_ball_index: int = 0
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    entries: list[RewardEntry] = field(default_factory=list)
    total_client_calculated_reward: int = 0
    status: BatchStatus = BatchStatus.PENDING
    retry_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_entry(self, entry: RewardEntry):
        """Append an entry and update the claimed total"""
        self.entries.append(entry)
        self.total_client_calculated_reward += entry.reward_amount

    def is_full(self, max_size: int) -> bool:
        return len(self.entries) >= max_size

    def can_retry(self, max_retries: int) -> bool:
        return self.retry_count < max_retries

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict:
        """Convert to dictionary (used for logging and debugging)"""
        return {
            "batch_id": self.batch_id,
            "player_id": self.player_id,
            "session_id": self.session_id,
            "starting_ball_index": self.starting_ball_index,
            "entries": [entry.to_dict() for entry in self.entries],
            "total_client_calculated_reward": self.total_client_calculated_reward,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
        }
