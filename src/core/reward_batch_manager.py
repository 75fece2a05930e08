"""
Reward Batch Manager

Client-side reward pipeline. Scored balls are credited optimistically, grouped
into batches and submitted to the authoritative server one at a time. Server
verdicts are reconciled back into the balances:

    optimistic_balance == verified_balance + pending_rewards
    pending_rewards == claimed total of (open + in-flight + queued + failed batches)

holds after every public operation.

Timers (batch timeout, retry interval) are accumulated-time counters advanced
by tick(); server calls run as asyncio tasks on the caller's event loop.
"""

import asyncio
import logging
from collections import deque
from contextlib import suppress

from models import BatchStatus, BatchValidationResponse, RewardBatch, RewardEntry
from services.event_bus import EventBus, Events, event_bus
from services.server_service import ServerService

from .task_utils import schedule

logger = logging.getLogger(__name__)


class RewardBatchManager:
    """
    Accumulates rewards into batches and reconciles server verdicts.

    Args:
        server: Authoritative server (the only dependency besides the bus)
        batch_size: Entries per batch before automatic submission
        batch_timeout_seconds: Max age of a non-empty open batch
        retry_interval_seconds: How often failed batches are requeued
        max_retries: Transient failures tolerated before a batch is written off
        flush_poll_interval: Poll period used by flush()
        bus: EventBus for pipeline notifications
    """

    def __init__(
        self,
        server: ServerService,
        batch_size: int = 10,
        batch_timeout_seconds: float = 3.0,
        retry_interval_seconds: float = 1.0,
        max_retries: int = 3,
        flush_poll_interval: float = 0.1,
        bus: EventBus | None = None,
    ):
        self._server = server
        self.batch_size = batch_size
        self.batch_timeout_seconds = batch_timeout_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.max_retries = max_retries
        self.flush_poll_interval = flush_poll_interval
        self._bus = bus or event_bus

        self.player_id = ""
        self.session_id = ""
        self.game_seed = ""
        self._next_ball_index = 0

        self._current_batch: RewardBatch | None = None
        self._pending_batches: deque[RewardBatch] = deque()
        self._failed_batches: list[RewardBatch] = []
        self._in_flight_batch: RewardBatch | None = None

        self._batch_timer = 0.0
        self._retry_timer = 0.0
        self._processing_task: asyncio.Task | None = None
        self._is_processing = False
        # Bumped per session so late results from a cancelled call are dropped
        self._generation = 0

        self.optimistic_balance = 0
        self.verified_balance = 0
        self.pending_rewards = 0

    @classmethod
    def from_config(cls, app_config, server: ServerService, **kwargs) -> "RewardBatchManager":
        batching = app_config.BATCHING
        return cls(
            server,
            batch_size=batching["batch_size"],
            batch_timeout_seconds=batching["batch_timeout_seconds"],
            retry_interval_seconds=batching["retry_interval_seconds"],
            max_retries=batching["max_retries"],
            flush_poll_interval=batching["flush_poll_interval"],
            **kwargs,
        )

    # ========== Read-only views ==========

    @property
    def failed_batch_count(self) -> int:
        return len(self._failed_batches)

    @property
    def failed_batch_rewards(self) -> int:
        return sum(b.total_client_calculated_reward for b in self._failed_batches)

    @property
    def pending_batch_count(self) -> int:
        open_batch = 1 if self._current_batch and not self._current_batch.is_empty else 0
        return len(self._pending_batches) + open_batch

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def current_batch(self) -> RewardBatch | None:
        return self._current_batch

    # ========== Session ==========

    def initialize_session(
        self, player_id: str, session_id, game_seed: str, current_balance: int
    ):
        """Reset the pipeline for a new session, abandoning any in-flight call"""
        self._cancel_processing_task()
        self._generation += 1

        self.player_id = player_id
        self.session_id = str(session_id)
        self.game_seed = game_seed
        self._next_ball_index = 0

        self._pending_batches.clear()
        self._failed_batches.clear()
        self._in_flight_batch = None

        self.verified_balance = current_balance
        self.optimistic_balance = current_balance
        self.pending_rewards = 0

        self._current_batch = self._create_new_batch()
        self._batch_timer = 0.0
        self._retry_timer = 0.0

        logger.info(
            f"Reward pipeline initialized for {player_id} "
            f"(session {self.session_id}, balance {current_balance})"
        )

    # ========== Scoring ==========

    def add_reward(
        self,
        ball_index: int,
        bucket_index: int,
        total_bucket_count: int,
        reward: int,
        level: int,
        drop_x: float,
    ):
        """Record a scored ball and credit it optimistically"""
        if self._current_batch is None:
            self._current_batch = self._create_new_batch()

        self._current_batch.add_entry(
            RewardEntry(
                ball_index=ball_index,
                bucket_index=bucket_index,
                total_bucket_count=total_bucket_count,
                reward_amount=reward,
                level=level,
                drop_position_x=drop_x,
            )
        )

        self.optimistic_balance += reward
        self.pending_rewards += reward
        self._publish_wallet()

        self._next_ball_index = ball_index + 1

        if self._current_batch.is_full(self.batch_size):
            self._submit_current_batch()

    def tick(self, delta_time: float):
        """Advance timers, submit timed-out batches and drive delivery/retry"""
        if self._current_batch is not None and not self._current_batch.is_empty:
            self._batch_timer += delta_time
            if self._batch_timer >= self.batch_timeout_seconds:
                self._submit_current_batch()
        else:
            self._batch_timer = 0.0

        self._ensure_processing()
        self._retry_failed_batches_if_needed(delta_time)

    # ========== Async operations ==========

    async def flush(self):
        """Submit the open batch and wait until the queue drains"""
        if self._current_batch is not None and not self._current_batch.is_empty:
            self._submit_current_batch()

        while self._pending_batches or self._is_processing:
            self._ensure_processing()
            await asyncio.sleep(self.flush_poll_interval)

    async def retry_failed_batches(self):
        """Requeue every failed batch now, regardless of the retry interval"""
        if not self._failed_batches:
            return

        retry_buffer = list(self._failed_batches)
        self._failed_batches.clear()
        for batch in retry_buffer:
            batch.status = BatchStatus.PENDING
            self._pending_batches.append(batch)
        self._retry_timer = 0.0
        self._ensure_processing()

    async def force_sync_wallet(self) -> bool:
        """Replace the verified balance with the server's authoritative one"""
        try:
            response = await self._server.force_sync_wallet(self.player_id)
        except Exception as e:
            logger.error(f"[RewardBatchManager] force_sync_wallet failed: {e}")
            return False

        if not response.success:
            logger.warning(f"Wallet sync refused: {response.error_message}")
            return False

        self.verified_balance = response.server_balance
        self._recalculate_pending_rewards()
        self._publish_wallet()
        return True

    async def cancel_in_flight(self):
        """Cancel the in-flight validation (app pause); its batch is retried without penalty"""
        task = self._processing_task
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

        # A task cancelled before its first step never reaches its own cleanup
        if self._processing_task is task:
            self._is_processing = False
            self._processing_task = None

    async def shutdown(self):
        await self.cancel_in_flight()
        logger.info(
            f"Reward pipeline stopped ({len(self._pending_batches)} queued, "
            f"{len(self._failed_batches)} failed)"
        )

    # ========== Submission ==========

    def _create_new_batch(self) -> RewardBatch:
        return RewardBatch(
            player_id=self.player_id,
            session_id=self.session_id,
            game_seed=self.game_seed,
            starting_ball_index=self._next_ball_index,
        )

    def _submit_current_batch(self):
        batch = self._current_batch
        if batch is None or batch.is_empty:
            return

        batch.status = BatchStatus.SENDING
        self._bus.publish(Events.BATCH_CREATED, {"batch": batch})

        self._pending_batches.append(batch)
        self._current_batch = self._create_new_batch()
        self._batch_timer = 0.0

    def _ensure_processing(self):
        if self._is_processing or not self._pending_batches:
            return
        task = schedule(
            self._process_pending_batches(self._generation),
            "RewardBatchManager.process_pending_batches",
        )
        if task is not None:
            self._is_processing = True
            self._processing_task = task

    def _cancel_processing_task(self):
        if self._processing_task is not None and not self._processing_task.done():
            self._processing_task.cancel()
        self._processing_task = None
        self._is_processing = False

    async def _process_pending_batches(self, generation: int):
        try:
            while self._pending_batches and generation == self._generation:
                batch = self._pending_batches.popleft()
                await self._validate_batch(batch, generation)
        finally:
            if generation == self._generation:
                self._is_processing = False
                self._processing_task = None

    async def _validate_batch(self, batch: RewardBatch, generation: int):
        batch.status = BatchStatus.SENDING
        self._in_flight_batch = batch
        try:
            response = await self._server.validate_batch(batch)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._in_flight_batch = None
                batch.status = BatchStatus.PENDING
                self._failed_batches.append(batch)
                logger.info(f"Batch {batch.batch_id} cancelled in flight, queued for retry")
            raise
        except Exception as e:
            if generation != self._generation:
                return
            self._in_flight_batch = None
            logger.error(
                f"[RewardBatchManager] validate_batch failed (retry {batch.retry_count}): {e}"
            )
            batch.status = BatchStatus.PENDING
            batch.retry_count += 1
            self._failed_batches.append(batch)
            return

        if generation != self._generation:
            logger.debug(f"Dropping verdict for batch {batch.batch_id} from a previous session")
            return

        self._in_flight_batch = None
        self._handle_response(batch, response)

    def _handle_response(self, batch: RewardBatch, response: BatchValidationResponse):
        if response.is_retryable:
            batch.status = BatchStatus.PENDING
            batch.retry_count += 1
            self._failed_batches.append(batch)
            logger.info(
                f"Batch {batch.batch_id} transient failure "
                f"(retry {batch.retry_count}/{self.max_retries}): {response.error_message}"
            )
            return

        if response.is_valid:
            self._apply_valid_response(batch, response)
        else:
            self._apply_rejected_response(batch, response)

    def _apply_valid_response(self, batch: RewardBatch, response: BatchValidationResponse):
        batch.status = BatchStatus.VALIDATED
        self.verified_balance = response.new_wallet_balance

        invalid = [i for i in response.invalid_entry_indices if 0 <= i < len(batch.entries)]
        if invalid:
            rejected_amount = sum(batch.entries[i].reward_amount for i in invalid)
            if rejected_amount > 0:
                self.optimistic_balance -= rejected_amount
                self.pending_rewards -= rejected_amount
                self._bus.publish(
                    Events.ENTRIES_REJECTED,
                    {"count": len(invalid), "amount": rejected_amount},
                )

        self._recalculate_pending_rewards()
        logger.debug(
            f"Batch {batch.batch_id} validated: +{response.server_calculated_reward} "
            f"(verified {self.verified_balance})"
        )

        self._bus.publish(Events.BATCH_VALIDATED, {"batch": batch, "response": response})
        self._publish_wallet()

    def _apply_rejected_response(self, batch: RewardBatch, response: BatchValidationResponse):
        batch.status = BatchStatus.REJECTED

        valid_amount = response.server_calculated_reward
        rejected_amount = batch.total_client_calculated_reward - valid_amount

        if rejected_amount > 0:
            self.optimistic_balance -= rejected_amount
            self.pending_rewards -= rejected_amount
            rejected_count = len(response.invalid_entry_indices) or len(batch.entries)
            self._bus.publish(
                Events.ENTRIES_REJECTED, {"count": rejected_count, "amount": rejected_amount}
            )

        if response.new_wallet_balance > 0:
            self.verified_balance = response.new_wallet_balance

        self._recalculate_pending_rewards()
        message = response.error_message or "Batch rejected"
        logger.warning(f"Batch {batch.batch_id} rejected: {message}")

        self._bus.publish(Events.BATCH_FAILED, {"batch": batch, "error_message": message})
        self._publish_wallet()

    # ========== Retry ==========

    def _retry_failed_batches_if_needed(self, delta_time: float):
        if not self._failed_batches:
            return

        self._retry_timer += delta_time
        if self._retry_timer < self.retry_interval_seconds:
            return
        self._retry_timer = 0.0

        retry_buffer = list(self._failed_batches)
        self._failed_batches.clear()

        for batch in retry_buffer:
            if not batch.can_retry(self.max_retries):
                lost_amount = batch.total_client_calculated_reward
                batch.status = BatchStatus.ERROR
                self.optimistic_balance -= lost_amount
                self.pending_rewards -= lost_amount
                logger.warning(
                    f"Batch {batch.batch_id} written off after {batch.retry_count} retries "
                    f"({len(batch.entries)} entries, {lost_amount} points)"
                )
                self._bus.publish(
                    Events.ENTRIES_REJECTED, {"count": len(batch.entries), "amount": lost_amount}
                )
                self._publish_wallet()
                continue

            batch.status = BatchStatus.PENDING
            self._pending_batches.append(batch)

        self._recalculate_pending_rewards()
        self._ensure_processing()

    # ========== Balances ==========

    def _recalculate_pending_rewards(self):
        pending = 0
        if self._current_batch is not None:
            pending += self._current_batch.total_client_calculated_reward
        if self._in_flight_batch is not None:
            pending += self._in_flight_batch.total_client_calculated_reward
        pending += sum(b.total_client_calculated_reward for b in self._pending_batches)
        pending += sum(b.total_client_calculated_reward for b in self._failed_batches)

        self.pending_rewards = pending
        self.optimistic_balance = self.verified_balance + pending

    def _publish_wallet(self):
        self._bus.publish(
            Events.WALLET_UPDATED,
            {
                "balance": self.optimistic_balance,
                "verified": self.verified_balance,
                "pending": self.pending_rewards,
            },
        )
