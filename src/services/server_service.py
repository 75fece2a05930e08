"""
Server Service Interface

Contract between the client pipeline / session manager and the
authoritative server. The client depends only on this interface, never on
server-owned state.
"""

from abc import ABC, abstractmethod

from models import BatchValidationResponse, RewardBatch, SessionData, WalletSyncResponse


class ServerError(Exception):
    """Server request failed (simulated outage, unreachable, refused)"""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ServerService(ABC):
    """Authoritative server operations (all async; each call may suspend)"""

    @abstractmethod
    async def start_session(self, player_id: str) -> SessionData:
        """
        Start a fresh session for a player.

        Raises:
            ServerError: The request failed
        """
        pass

    @abstractmethod
    async def sync_session(
        self, player_id: str, session_id: str, client_wallet_balance: int = 0
    ) -> SessionData:
        """Resume the given session, or start a new one if it is stale"""
        pass

    @abstractmethod
    async def validate_batch(self, batch: RewardBatch) -> BatchValidationResponse:
        """Recompute and credit a reward batch. Never raises for bad entries."""
        pass

    @abstractmethod
    async def get_wallet_balance(self, player_id: str) -> int:
        pass

    @abstractmethod
    async def force_sync_wallet(self, player_id: str) -> WalletSyncResponse:
        pass

    def set_spawn_boundaries(self, left: float, right: float):
        """Tell the server where balls can be spawned (for plausibility checks)"""
