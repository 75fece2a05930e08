"""Core module - client-side reward pipeline and run accounting"""

from .reward_batch_manager import RewardBatchManager
from .run_tracker import RunTracker
from .task_utils import run_logged, schedule

__all__ = [
    "RewardBatchManager",
    "RunTracker",
    "run_logged",
    "schedule",
]
