"""
Persisted ledger and session records

Serialized forms written to the key/value store. Each record is written as a
single JSON blob (whole-value overwrite, no schema versioning).
"""

from datetime import datetime

from pydantic import BaseModel, Field


class PlayerLedgerRecord(BaseModel):
    """Persisted form of one player's server-side ledger."""

    player_id: str
    wallet_balance: int = 0
    total_earned: int = 0
    session_id: str | None = None
    game_seed: str | None = None
    session_start_time: datetime | None = None
    session_ball_index: int = 0

    class Config:
        extra = "ignore"


class LedgerSnapshot(BaseModel):
    """All player ledgers, persisted under one key."""

    players: list[PlayerLedgerRecord] = Field(default_factory=list)


class SessionBookmark(BaseModel):
    """Client-side bookmark used to restore a session after restart."""

    session_id: str
    session_start_time: datetime
