"""
Mock Authoritative Server

In-process stand-in for the game backend. It is the only place the wallet
balance is ever credited:

- Recomputes every claimed reward from the level tables
- Refuses duplicate ball indices within a session
- Runs the anti-cheat engine over fully-valid batches
- Simulates network latency and transient request failures

Ledger state is keyed by player id, guarded by an RLock, and persisted to the
key/value store after every balance-affecting mutation and session start.
"""

import asyncio
import base64
import logging
import random
import secrets
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from anticheat import AntiCheatConfig, AntiCheatValidator
from models import (
    BatchValidationResponse,
    LedgerSnapshot,
    LevelTable,
    PlayerLedgerRecord,
    RewardBatch,
    SessionData,
    WalletSyncResponse,
)
from models.levels import DEFAULT_BUCKET_COUNT

from .event_bus import EventBus, Events, event_bus
from .preferences import KeyValueStore
from .server_service import ServerError, ServerService

logger = logging.getLogger(__name__)

SERVER_STATE_KEY = "MockServer_PlayerStates"

# De-dup set bound; cleared wholesale when reached
MAX_VALIDATED_INDICES = 500

REWARD_TOLERANCE_RATIO = 0.01


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ServerPlayerState:
    """Server-owned ledger for one player"""

    player_id: str
    wallet_balance: int = 0
    total_earned: int = 0
    current_session_id: str | None = None
    current_game_seed: str | None = None
    session_start_time: datetime | None = None
    session_ball_index: int = 0
    validated_ball_indices: set[int] = field(default_factory=set)

    def add_validated_index(self, ball_index: int):
        if len(self.validated_ball_indices) >= MAX_VALIDATED_INDICES:
            self.validated_ball_indices.clear()
        self.validated_ball_indices.add(ball_index)

    def credit(self, amount: int):
        self.wallet_balance += amount
        self.total_earned += amount

    def to_record(self) -> PlayerLedgerRecord:
        return PlayerLedgerRecord(
            player_id=self.player_id,
            wallet_balance=self.wallet_balance,
            total_earned=self.total_earned,
            session_id=self.current_session_id,
            game_seed=self.current_game_seed,
            session_start_time=self.session_start_time,
            session_ball_index=self.session_ball_index,
        )

    @classmethod
    def from_record(cls, record: PlayerLedgerRecord) -> "ServerPlayerState":
        start = record.session_start_time
        if start is not None and start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return cls(
            player_id=record.player_id,
            wallet_balance=record.wallet_balance,
            total_earned=record.total_earned,
            current_session_id=record.session_id,
            current_game_seed=record.game_seed,
            session_start_time=start,
            session_ball_index=record.session_ball_index,
        )


class MockServerService(ServerService):
    """
    Authoritative server simulation.

    Args:
        preferences: Store for the persisted ledger
        levels: Reward tables used for recomputation (defaults to LevelTable.default())
        anti_cheat_config: Anti-cheat thresholds
        min_latency_ms / max_latency_ms: Simulated latency range per request
        error_rate: Probability of a simulated request failure
        session_duration_minutes: Session lifetime
        initial_ball_count: Balls granted with each new session
        rng: Random source for latency and failures (seed it for determinism)
        clock: Returns the current UTC datetime
        bus: EventBus for server notifications
    """

    def __init__(
        self,
        preferences: KeyValueStore,
        levels: LevelTable | None = None,
        anti_cheat_config: AntiCheatConfig | None = None,
        min_latency_ms: float = 50.0,
        max_latency_ms: float = 200.0,
        error_rate: float = 0.01,
        session_duration_minutes: float = 15.0,
        initial_ball_count: int = 200,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        bus: EventBus | None = None,
    ):
        self._preferences = preferences
        self.levels = levels or LevelTable.default()
        self.min_latency_ms = min_latency_ms
        self.max_latency_ms = max(min_latency_ms, max_latency_ms)
        self.error_rate = error_rate
        self.session_duration = timedelta(minutes=session_duration_minutes)
        self.initial_ball_count = initial_ball_count

        self._rng = rng or random.Random()
        self._now = clock or _utcnow
        self._bus = bus or event_bus

        self._lock = threading.RLock()
        self._player_states: dict[str, ServerPlayerState] = {}

        self.anti_cheat = AntiCheatValidator(
            anti_cheat_config,
            self.levels,
            clock=lambda: self._now().timestamp(),
        )
        self.anti_cheat.audit.log_configuration()

        self._load_server_state()

    @classmethod
    def from_config(cls, app_config, preferences: KeyValueStore, **kwargs) -> "MockServerService":
        """Build from the application Config sections"""
        network = app_config.NETWORK
        session = app_config.SESSION
        server = cls(
            preferences,
            levels=app_config.get_level_table(),
            anti_cheat_config=AntiCheatConfig.from_dict(app_config.ANTI_CHEAT),
            min_latency_ms=network["min_latency_ms"],
            max_latency_ms=network["max_latency_ms"],
            error_rate=network["error_rate"],
            session_duration_minutes=session["duration_minutes"],
            initial_ball_count=session["initial_ball_count"],
            **kwargs,
        )
        board = app_config.BOARD
        server.set_spawn_boundaries(board["spawn_left"], board["spawn_right"])
        return server

    def set_spawn_boundaries(self, left: float, right: float):
        self.anti_cheat.set_spawn_boundaries(left, right)

    # ========== Sessions ==========

    async def start_session(self, player_id: str) -> SessionData:
        await self._simulate_latency()

        if self._should_simulate_error():
            message = "Failed to start session. Please try again."
            self._bus.publish(Events.SERVER_ERROR, {"operation": "start_session", "message": message})
            raise ServerError(message)

        session = self._start_session_locked(player_id)
        logger.info(f"Started session {session.session_id} for player {player_id}")
        return session

    def _start_session_locked(self, player_id: str) -> SessionData:
        with self._lock:
            state = self._player_states.get(player_id)
            if state is None:
                state = ServerPlayerState(player_id=player_id)
                self._player_states[player_id] = state
            elif state.current_session_id:
                self.anti_cheat.end_session(player_id, state.current_session_id)

            now = self._now()
            state.current_session_id = str(uuid.uuid4())
            state.current_game_seed = self._generate_game_seed()
            state.session_start_time = now
            state.session_ball_index = 0
            state.validated_ball_indices.clear()

            session = SessionData(
                session_id=state.current_session_id,
                player_id=player_id,
                game_seed=state.current_game_seed,
                start_time=now,
                expiry_time=now + self.session_duration,
                initial_ball_count=self.initial_ball_count,
                current_wallet_balance=state.wallet_balance,
            )

            self._save_server_state()

        self._bus.publish(Events.SERVER_SESSION_STARTED, {"session": session})
        return session

    async def sync_session(
        self, player_id: str, session_id: str, client_wallet_balance: int = 0
    ) -> SessionData:
        await self._simulate_latency()

        with self._lock:
            state = self._player_states.get(player_id)

            if state is None:
                # First contact: trust the client's balance and session id
                now = self._now()
                state = ServerPlayerState(
                    player_id=player_id,
                    wallet_balance=client_wallet_balance,
                    total_earned=client_wallet_balance,
                    current_session_id=session_id,
                    current_game_seed=self._generate_game_seed(),
                    session_start_time=now,
                )
                self._player_states[player_id] = state
                self._save_server_state()
                logger.info(
                    f"Bootstrapped ledger for unknown player {player_id} "
                    f"with balance {client_wallet_balance}"
                )

                session = SessionData(
                    session_id=session_id,
                    player_id=player_id,
                    game_seed=state.current_game_seed,
                    start_time=now,
                    expiry_time=now + self.session_duration,
                    initial_ball_count=self.initial_ball_count,
                    current_wallet_balance=state.wallet_balance,
                    remaining_seconds=-1,
                )
                self._bus.publish(Events.SERVER_SESSION_SYNCED, {"session": session})
                return session

            now = self._now()
            start = state.session_start_time or now
            elapsed = now - start
            stale = elapsed >= self.session_duration or state.current_session_id != session_id

            if not stale:
                session = SessionData(
                    session_id=state.current_session_id,
                    player_id=player_id,
                    game_seed=state.current_game_seed or "",
                    start_time=start,
                    expiry_time=start + self.session_duration,
                    initial_ball_count=self.initial_ball_count,
                    current_wallet_balance=state.wallet_balance,
                    remaining_seconds=(self.session_duration - elapsed).total_seconds(),
                )

        if stale:
            logger.info(f"Session {session_id} for {player_id} is stale, starting a new one")
            return await self.start_session(player_id)

        self._bus.publish(Events.SERVER_SESSION_SYNCED, {"session": session})
        return session

    # ========== Validation ==========

    async def validate_batch(self, batch: RewardBatch) -> BatchValidationResponse:
        await self._simulate_latency()

        if self._should_simulate_error():
            response = BatchValidationResponse.retryable(
                batch.batch_id, "Server validation timeout. Will retry automatically."
            )
            self._bus.publish(
                Events.SERVER_ERROR, {"operation": "validate_batch", "message": response.error_message}
            )
            return response

        with self._lock:
            state = self._player_states.get(batch.player_id)
            if state is None:
                response = BatchValidationResponse.rejected(batch.batch_id, "Invalid player")
            else:
                response = self._validate_batch_locked(batch, state)

        self._bus.publish(Events.SERVER_BATCH_VERDICT, {"batch": batch, "response": response})
        return response

    def _validate_batch_locked(
        self, batch: RewardBatch, state: ServerPlayerState
    ) -> BatchValidationResponse:
        server_total = 0
        validated_this_batch: list[int] = []
        invalid_indices: list[int] = []

        for i, entry in enumerate(batch.entries):
            reason = self._entry_rejection_reason(entry, state)
            if reason is None:
                server_total += entry.reward_amount
                validated_this_batch.append(entry.ball_index)
            else:
                invalid_indices.append(i)
                logger.debug(f"Batch {batch.batch_id} entry {i} refused: {reason}")

        for ball_index in validated_this_batch:
            state.add_validated_index(ball_index)
        if validated_this_batch:
            state.session_ball_index = max(state.session_ball_index, max(validated_this_batch) + 1)

        entry_count = len(batch.entries)

        if not invalid_indices:
            result = self.anti_cheat.validate_batch(batch, state.current_session_id or batch.session_id)
            if result.should_reject:
                return BatchValidationResponse.rejected(
                    batch.batch_id,
                    f"Batch rejected by anti-cheat: {', '.join(result.all_flags)}",
                    wallet_balance=state.wallet_balance,
                )

            state.credit(server_total)
            self._save_server_state()
            return BatchValidationResponse(
                batch_id=batch.batch_id,
                is_valid=True,
                server_calculated_reward=server_total,
                new_wallet_balance=state.wallet_balance,
            )

        if len(invalid_indices) < entry_count:
            state.credit(server_total)
            self._save_server_state()
            return BatchValidationResponse(
                batch_id=batch.batch_id,
                is_valid=True,
                server_calculated_reward=server_total,
                new_wallet_balance=state.wallet_balance,
                error_message=f"Partial validation: {len(invalid_indices)}/{entry_count} entries rejected",
                invalid_entry_indices=invalid_indices,
            )

        return BatchValidationResponse.rejected(
            batch.batch_id,
            "Batch rejected: all entries invalid (possible tampering)",
            wallet_balance=state.wallet_balance,
            invalid_entry_indices=invalid_indices,
        )

    def _entry_rejection_reason(self, entry, state: ServerPlayerState) -> str | None:
        """Return why an entry is refused, or None if it passes"""
        if entry.ball_index in state.validated_ball_indices:
            return f"Duplicate ball index: {entry.ball_index} already validated"
        if entry.ball_index < 0:
            return f"Invalid ball index: {entry.ball_index}"

        bucket_count = entry.total_bucket_count if entry.total_bucket_count > 0 else DEFAULT_BUCKET_COUNT
        if entry.bucket_index < 0 or entry.bucket_index >= bucket_count:
            return f"Invalid bucket index: {entry.bucket_index} (max: {bucket_count - 1})"

        expected = self.calculate_expected_reward(entry.bucket_index, bucket_count, entry.level)
        tolerance = max(1, int(expected * REWARD_TOLERANCE_RATIO))
        if abs(entry.reward_amount - expected) > tolerance:
            return f"Reward mismatch: claimed {entry.reward_amount}, expected {expected}"
        return None

    def calculate_expected_reward(self, bucket_index: int, bucket_count: int, level: int) -> int:
        level_config = self.levels.get(level)
        if not level_config.buckets:
            return 1
        return level_config.expected_reward(bucket_index, bucket_count)

    # ========== Wallet ==========

    async def get_wallet_balance(self, player_id: str) -> int:
        await self._simulate_latency()
        with self._lock:
            state = self._player_states.get(player_id)
            return state.wallet_balance if state else 0

    async def force_sync_wallet(self, player_id: str) -> WalletSyncResponse:
        await self._simulate_latency()
        with self._lock:
            state = self._player_states.get(player_id)
            if state is None:
                return WalletSyncResponse(success=False, error_message="Player not found")
            return WalletSyncResponse(
                success=True,
                server_balance=state.wallet_balance,
                total_earned=state.total_earned,
            )

    def get_player_state(self, player_id: str) -> ServerPlayerState | None:
        """Server-side inspection hook (admin/tests); never exposed to clients"""
        with self._lock:
            return self._player_states.get(player_id)

    # ========== Simulation ==========

    async def _simulate_latency(self):
        latency_ms = self._rng.uniform(self.min_latency_ms, self.max_latency_ms)
        await asyncio.sleep(latency_ms / 1000.0)

    def _should_simulate_error(self) -> bool:
        return self._rng.random() < self.error_rate

    @staticmethod
    def _generate_game_seed() -> str:
        return base64.b64encode(secrets.token_bytes(16)).decode("ascii")

    # ========== Persistence ==========

    def _save_server_state(self):
        try:
            snapshot = LedgerSnapshot(
                players=[state.to_record() for state in self._player_states.values()]
            )
            self._preferences.set_string(SERVER_STATE_KEY, snapshot.model_dump_json())
            self._preferences.save()
        except Exception as e:
            logger.warning(f"[MockServerService] SaveServerState failed: {e}")

    def _load_server_state(self):
        if not self._preferences.has_key(SERVER_STATE_KEY):
            return

        try:
            snapshot = LedgerSnapshot.model_validate_json(
                self._preferences.get_string(SERVER_STATE_KEY)
            )
        except ValidationError as e:
            logger.warning(f"[MockServerService] LoadServerState failed: {e}")
            return

        with self._lock:
            for record in snapshot.players:
                self._player_states[record.player_id] = ServerPlayerState.from_record(record)
        logger.info(f"Loaded {len(snapshot.players)} player ledgers")
