"""
Anti-cheat engine: plausibility checks and statistical anomaly detection
"""

from .audit_log import AntiCheatLogger
from .baseline import ExpectedStats, ExpectedStatsCache, compute_expected_stats
from .config import AntiCheatConfig
from .stats import AntiCheatStatsSummary, PlayerAntiCheatStats
from .validator import (
    AntiCheatValidator,
    BatchAntiCheatResult,
    EntryValidationResult,
    StatisticalAnalysisResult,
)

__all__ = [
    "AntiCheatConfig",
    "AntiCheatLogger",
    "AntiCheatStatsSummary",
    "AntiCheatValidator",
    "BatchAntiCheatResult",
    "EntryValidationResult",
    "ExpectedStats",
    "ExpectedStatsCache",
    "PlayerAntiCheatStats",
    "StatisticalAnalysisResult",
    "compute_expected_stats",
]
