"""
Data models for the reward economy
"""

from .enums import BatchStatus, SessionState
from .ledger import LedgerSnapshot, PlayerLedgerRecord, SessionBookmark
from .levels import (
    DEFAULT_BUCKET_COUNT,
    DEFAULT_LEVELS,
    BucketConfig,
    LevelConfig,
    LevelTable,
    map_bucket_index,
)
from .responses import BatchValidationResponse, SessionData, WalletSyncResponse
from .reward_batch import RewardBatch, RewardEntry
from .run_summary import RunSummary

__all__ = [
    "BatchStatus",
    "SessionState",
    "RewardEntry",
    "RewardBatch",
    # Level tables
    "DEFAULT_BUCKET_COUNT",
    "DEFAULT_LEVELS",
    "BucketConfig",
    "LevelConfig",
    "LevelTable",
    "map_bucket_index",
    # Server responses
    "BatchValidationResponse",
    "SessionData",
    "WalletSyncResponse",
    # Persisted records
    "PlayerLedgerRecord",
    "LedgerSnapshot",
    "SessionBookmark",
    "RunSummary",
]
