"""
Server Response Schemas

Payloads returned by the authoritative server to the client. These are the
only view the client has of the server ledger: the client never reads
server-owned state directly.

Invariant: a retryable validation response is never valid.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator


class BatchValidationResponse(BaseModel):
    """
    Server verdict for one submitted reward batch.

    Outcomes:
    - is_valid and no invalid indices: full credit
    - is_valid with invalid indices: partial credit (passing entries only)
    - not is_valid and is_retryable: transient failure, resubmit later
    - not is_valid and not is_retryable: conclusive rejection
    """

    batch_id: str = Field(..., description="Batch this verdict refers to")
    is_valid: bool = Field(False, description="Server credited the batch (fully or partially)")
    is_retryable: bool = Field(False, description="Transient failure, safe to resubmit")
    server_calculated_reward: int = Field(0, description="Amount the server credited")
    new_wallet_balance: int = Field(0, description="Authoritative balance after this verdict")
    error_message: str | None = Field(None, description="Human-readable reason, if any")
    invalid_entry_indices: list[int] = Field(
        default_factory=list, description="Positions in batch.entries that were refused"
    )

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def retryable_is_never_valid(self):
        if self.is_retryable and self.is_valid:
            raise ValueError("a retryable response cannot be valid")
        return self

    @property
    def is_partial(self) -> bool:
        return self.is_valid and bool(self.invalid_entry_indices)

    @classmethod
    def retryable(cls, batch_id: str, message: str) -> "BatchValidationResponse":
        return cls(batch_id=batch_id, is_valid=False, is_retryable=True, error_message=message)

    @classmethod
    def rejected(
        cls,
        batch_id: str,
        message: str,
        wallet_balance: int = 0,
        invalid_entry_indices: list[int] | None = None,
    ) -> "BatchValidationResponse":
        return cls(
            batch_id=batch_id,
            is_valid=False,
            is_retryable=False,
            server_calculated_reward=0,
            new_wallet_balance=wallet_balance,
            error_message=message,
            invalid_entry_indices=invalid_entry_indices or [],
        )


class SessionData(BaseModel):
    """Session identity handed to the client on start or resume."""

    session_id: str = Field(..., description="Server-issued session UUID")
    player_id: str = Field(..., description="Owner of the session")
    game_seed: str = Field("", description="Base64 seed issued with the session")
    start_time: datetime = Field(..., description="Session start (UTC)")
    expiry_time: datetime = Field(..., description="Session expiry (UTC)")
    initial_ball_count: int = Field(0, ge=0, description="Balls granted at session start")
    current_wallet_balance: int = Field(0, description="Authoritative balance at issue time")
    remaining_seconds: float = Field(
        -1, description="Server-computed time left; -1 means compute locally from expiry"
    )

    @field_validator("remaining_seconds", mode="before")
    @classmethod
    def coerce_remaining(cls, v):
        """Treat a missing value as 'compute locally'."""
        if v is None:
            return -1
        return v

    @property
    def should_compute_locally(self) -> bool:
        return self.remaining_seconds < 0


class WalletSyncResponse(BaseModel):
    """Authoritative balance snapshot for a forced wallet sync."""

    success: bool = Field(False)
    server_balance: int = Field(0)
    total_earned: int = Field(0)
    error_message: str | None = Field(None)
