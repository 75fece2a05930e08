"""
Run Tracker - keeps a RunSummary current from bus notifications
"""

import logging

from models import RunSummary
from services.event_bus import EventBus, Events, event_bus

logger = logging.getLogger(__name__)


class RunTracker:
    """
    Subscribes to gameplay and pipeline events and folds them into a RunSummary.

    Subscriptions are weak: keep a reference to the tracker for as long as the
    run lasts.
    """

    def __init__(self, pipeline=None, summary: RunSummary | None = None, bus: EventBus | None = None):
        self.pipeline = pipeline
        self.summary = summary or RunSummary()
        self._bus = bus or event_bus

        self._bus.subscribe(Events.BALL_DROPPED, self._on_ball_dropped)
        self._bus.subscribe(Events.BALL_SCORED, self._on_ball_scored)
        self._bus.subscribe(Events.BATCH_VALIDATED, self._on_batch_validated)
        self._bus.subscribe(Events.BATCH_FAILED, self._on_batch_failed)
        self._bus.subscribe(Events.ENTRIES_REJECTED, self._on_entries_rejected)

    def close(self):
        for event, handler in [
            (Events.BALL_DROPPED, self._on_ball_dropped),
            (Events.BALL_SCORED, self._on_ball_scored),
            (Events.BATCH_VALIDATED, self._on_batch_validated),
            (Events.BATCH_FAILED, self._on_batch_failed),
            (Events.ENTRIES_REJECTED, self._on_entries_rejected),
        ]:
            self._bus.unsubscribe(event, handler)

    def _on_ball_dropped(self, event: dict):
        self.summary.on_ball_dropped()

    def _on_ball_scored(self, event: dict):
        data = event["data"]
        self.summary.on_ball_scored(data["reward"])
        self.summary.on_level_reached(data.get("level", 0))
        self._update_pending_state()

    def _on_batch_validated(self, event: dict):
        response = event["data"]["response"]
        self.summary.on_batch_validated(response.server_calculated_reward)
        self._update_pending_state()

    def _on_batch_failed(self, event: dict):
        self._update_pending_state()

    def _on_entries_rejected(self, event: dict):
        data = event["data"]
        self.summary.on_batch_rejected(data["count"], data["amount"])
        self._update_pending_state()

    def _update_pending_state(self):
        if self.pipeline is None:
            return
        self.summary.update_pending_points(self.pipeline.pending_rewards)
        self.summary.update_retrying_batches(
            self.pipeline.failed_batch_count, self.pipeline.failed_batch_rewards
        )

    def finalize(self) -> RunSummary:
        self._update_pending_state()
        self.summary.finalize_run()
        logger.info(
            f"Run finished: earned={self.summary.total_points_earned}, "
            f"verified={self.summary.verified_points}, pending={self.summary.pending_points}, "
            f"rejected={self.summary.rejected_points} ({self.summary.rejected_ball_count} balls), "
            f"gap={self.summary.unaccounted_points}"
        )
        return self.summary
