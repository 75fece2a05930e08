"""
Main Entry Point for the Plinko reward economy
Headless simulation: drops balls on a fair board, feeds the reward pipeline
and reports the run summary once every batch has settled.
"""

__version__ = "1.0.0"

import argparse
import asyncio
import logging
import random
import sys
from datetime import datetime, timedelta, timezone

from config import ConfigError, config
from core import RewardBatchManager, RunTracker
from models import RunSummary, SessionData
from services import Events, InMemoryStore, JsonFileStore, MockServerService, ServerError, SessionManager
from services.event_bus import event_bus
from services.logger import PerformanceLogger, cleanup_logging, log_performance, setup_logging

START_SESSION_ATTEMPTS = 3


class SimulatedClock:
    """Wall clock advanced by the simulation instead of real time"""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float):
        self._now += timedelta(seconds=seconds)


class PlinkoSimulation:
    """
    Drives one player through one session.

    Each ball is dropped at a random spawn position and falls through one
    peg row per bucket gap, nudged toward the side it was dropped on. With
    cheat=True every ball is reported in the outermost bucket instead.
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.logger = logging.getLogger(__name__)
        self.rng = random.Random(args.seed)
        self.clock = SimulatedClock()

        if args.in_memory:
            self.store = InMemoryStore()
        else:
            self.store = JsonFileStore(config.FILES["preferences_file"], autosave=False)

        server_kwargs = {
            "rng": random.Random(self.rng.random()),
            "clock": self.clock.now,
        }
        self.server = MockServerService.from_config(config, self.store, **server_kwargs)
        if args.error_rate is not None:
            self.server.error_rate = args.error_rate
        if args.no_latency:
            self.server.min_latency_ms = 0.0
            self.server.max_latency_ms = 0.0

        self.sessions = SessionManager(
            self.server,
            self.store,
            session_duration_minutes=config.SESSION["duration_minutes"],
            timer_update_interval=config.SESSION["timer_update_interval"],
            clock=self.clock.now,
        )
        self.pipeline = RewardBatchManager.from_config(config, self.server)
        self.tracker = RunTracker(self.pipeline)
        self.levels = config.get_level_table()

        self._expired = False
        event_bus.subscribe(Events.SESSION_EXPIRED, self._on_session_expired)
        event_bus.subscribe(Events.BATCH_FAILED, self._on_batch_failed)

    def _on_session_expired(self, event: dict):
        self._expired = True

    def _on_batch_failed(self, event: dict):
        self.logger.warning(f"Batch rejected: {event['data']['error_message']}")

    async def _open_session(self) -> SessionData:
        player_id = self.args.player
        if self.sessions.try_restore_session():
            return await self.sessions.sync_session(player_id)

        last_error: ServerError | None = None
        for attempt in range(1, START_SESSION_ATTEMPTS + 1):
            try:
                return await self.sessions.start_new_session(player_id)
            except ServerError as e:
                last_error = e
                self.logger.warning(f"Session start attempt {attempt} failed: {e}")
        raise last_error

    def _drop_ball(self, ball_index: int) -> tuple[int, int, int, int, float]:
        """Returns (bucket_index, bucket_count, reward, level, drop_x)"""
        level = min(ball_index // self.args.balls_per_level, len(self.levels) - 1)
        level_config = self.levels.get(level)
        bucket_count = level_config.bucket_count
        rows = bucket_count - 1

        spawn_left = config.BOARD["spawn_left"]
        spawn_right = config.BOARD["spawn_right"]
        drop_x = self.rng.uniform(spawn_left, spawn_right)

        if self.args.cheat:
            bucket_index = 0
        else:
            position = 0
            for _ in range(rows):
                position += self.rng.randint(0, 1)
            normalized = (drop_x - spawn_left) / (spawn_right - spawn_left)
            position += round((normalized - 0.5) * rows / 2)
            bucket_index = max(0, min(rows, position))

        reward = level_config.expected_reward(bucket_index, bucket_count)
        return bucket_index, bucket_count, reward, level, drop_x

    def _advance(self, seconds: float):
        self.clock.advance(seconds)
        self.sessions.tick(seconds)
        self.pipeline.tick(seconds)

    async def run(self) -> RunSummary:
        session = await self._open_session()
        player_id = self.args.player
        self.pipeline.initialize_session(
            player_id, session.session_id, session.game_seed, session.current_wallet_balance
        )

        ball_count = self.args.balls or session.initial_ball_count
        self.logger.info(
            f"Dropping {ball_count} balls for {player_id} "
            f"(session {session.session_id}, {self.sessions.formatted_time_remaining()} left)"
        )

        with PerformanceLogger(self.logger, "drop loop") as perf:
            for ball_index in range(ball_count):
                if self._expired:
                    self.logger.info(f"Session expired after {ball_index} balls")
                    break

                event_bus.publish(Events.BALL_DROPPED, {"ball_index": ball_index})
                bucket_index, bucket_count, reward, level, drop_x = self._drop_ball(ball_index)
                self.pipeline.add_reward(
                    ball_index, bucket_index, bucket_count, reward, level, drop_x
                )
                event_bus.publish(
                    Events.BALL_SCORED,
                    {"ball_index": ball_index, "bucket_index": bucket_index, "reward": reward, "level": level},
                )

                self._advance(self.args.drop_interval)
                # Keep server validation in step with simulated time
                while self.pipeline.is_processing:
                    await asyncio.sleep(self.pipeline.flush_poll_interval)

        log_performance("drop_loop", perf.duration, {"balls": self.tracker.summary.total_balls_dropped})

        await self._drain()
        await self.pipeline.force_sync_wallet()
        summary = self.tracker.finalize()
        await self.pipeline.shutdown()
        return summary

    async def _drain(self):
        """Flush and keep retrying until no batch is left (or retries are exhausted)"""
        with PerformanceLogger(self.logger, "drain"):
            for _ in range(self.pipeline.max_retries + 2):
                await self.pipeline.flush()
                if self.pipeline.failed_batch_count == 0:
                    return
                self._advance(self.pipeline.retry_interval_seconds)
            await self.pipeline.flush()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plinko reward economy simulation")
    parser.add_argument("--player", default="player-1", help="Player id")
    parser.add_argument("--balls", type=int, default=0, help="Balls to drop (default: session allotment)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the board")
    parser.add_argument("--error-rate", type=float, default=None, help="Override simulated failure rate")
    parser.add_argument("--drop-interval", type=float, default=1.0, help="Simulated seconds between drops")
    parser.add_argument("--balls-per-level", type=int, default=50, help="Balls before advancing a level")
    parser.add_argument("--no-latency", action="store_true", help="Disable simulated network latency")
    parser.add_argument("--in-memory", action="store_true", help="Do not persist state to disk")
    parser.add_argument("--cheat", action="store_true", help="Report every ball in the edge bucket")
    parser.add_argument("--config", default=None, help="JSON config override file")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.config:
        config.load_from_file(args.config)
    if not args.in_memory:
        config.ensure_directories()
    if args.in_memory:
        config.LOGGING["file_output"] = False

    logger = setup_logging()
    logger.info("=" * 60)
    logger.info(f"Plinko Reward Economy v{__version__} - Starting Simulation")
    logger.info("=" * 60)

    try:
        config.validate()
        logger.info("Configuration validated successfully")
    except ConfigError as e:
        logger.critical(f"Configuration validation failed: {e}")
        return 1

    simulation = PlinkoSimulation(args)
    try:
        summary = asyncio.run(simulation.run())
    except ServerError as e:
        logger.error(f"Could not start a session: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    finally:
        simulation.tracker.close()

    logger.info(f"Run summary: {summary.to_dict()}")
    logger.info(
        f"Wallet: verified={simulation.pipeline.verified_balance}, "
        f"optimistic={simulation.pipeline.optimistic_balance}"
    )
    cleanup_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
