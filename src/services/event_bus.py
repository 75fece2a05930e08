"""
Event Bus Service - synchronous, thread-safe notification contract

Key behaviors:
- Publish dispatches on the caller's thread, in the same tick
- Weak references for automatic subscriber cleanup (bound methods via WeakMethod)
- No locks held during callback execution (deadlock prevention)
- Callback ID tracking for proper unsubscribe and duplicate prevention
- A failing subscriber is logged and never breaks the publisher
"""

import logging
import threading
import weakref
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Events(Enum):
    """Notifications emitted by the reward pipeline, session manager and server"""

    # Reward pipeline
    WALLET_UPDATED = "wallet.updated"  # data: {"balance", "verified", "pending"}
    BATCH_CREATED = "batch.created"  # data: {"batch": RewardBatch}
    BATCH_VALIDATED = "batch.validated"  # data: {"batch", "response"}
    BATCH_FAILED = "batch.failed"  # data: {"batch", "error_message"}
    ENTRIES_REJECTED = "batch.entries_rejected"  # data: {"count", "amount"}

    # Client session
    SESSION_STARTED = "session.started"
    SESSION_RESUMED = "session.resumed"
    SESSION_EXPIRED = "session.expired"
    TIMER_UPDATED = "session.timer_updated"  # data: {"remaining_seconds"}

    # Gameplay (scoring callbacks from the physics layer)
    BALL_DROPPED = "game.ball_dropped"
    BALL_SCORED = "game.ball_scored"

    # Authoritative server
    SERVER_SESSION_STARTED = "server.session_started"
    SERVER_SESSION_SYNCED = "server.session_synced"
    SERVER_BATCH_VERDICT = "server.batch_verdict"
    SERVER_ERROR = "server.error"


class EventBus:
    """
    Thread-safe event bus with synchronous dispatch.

    Subscribers receive a single dict argument: {"name": event.value, "data": data}.
    """

    def __init__(self):
        # Subscribers stored as (callback_id, weak_ref_or_callback) tuples
        self._subscribers: dict[Events, list[tuple[int, Any]]] = {}

        # Track callbacks by ID for unsubscribe (no strong refs for weak subscriptions)
        self._callback_ids: dict[Events, dict[int, Any]] = {}

        # Lock only for subscription management, not during callback execution
        self._sub_lock = threading.RLock()

        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "errors": 0,
        }

        logger.debug("EventBus initialized")

    def subscribe(self, event: Events, callback: Callable, weak: bool = True):
        """
        Subscribe to an event.

        Args:
            event: Event to subscribe to
            callback: Callback function
            weak: Use weak reference for automatic cleanup (default True)
        """
        with self._sub_lock:
            self._subscribers.setdefault(event, [])
            self._callback_ids.setdefault(event, {})

            cb_id = self._callback_id(callback)

            existing = self._callback_ids[event].get(cb_id)
            if existing is not None:
                if self._resolve_callback(existing) is not None:
                    logger.debug(f"Already subscribed to {event.value}, skipping duplicate")
                    return
                # Stale weakref entry: remove it and re-subscribe
                self._callback_ids[event].pop(cb_id, None)
                self._subscribers[event] = [
                    (cid, ref) for cid, ref in self._subscribers[event] if cid != cb_id
                ]

            if weak:
                self._subscribers[event].append((cb_id, self._make_ref(callback)))
            else:
                self._subscribers[event].append((cb_id, callback))

            self._callback_ids[event][cb_id] = self._subscribers[event][-1][1]
            logger.debug(f"Subscribed to {event.value}")

    def unsubscribe(self, event: Events, callback: Callable):
        """Unsubscribe from an event using callback ID matching."""
        with self._sub_lock:
            if event not in self._subscribers:
                return

            cb_id = self._callback_id(callback)
            if event in self._callback_ids:
                self._callback_ids[event].pop(cb_id, None)

            self._subscribers[event] = [
                (cid, ref) for cid, ref in self._subscribers[event] if cid != cb_id
            ]
            if not self._subscribers[event]:
                self._subscribers.pop(event, None)
                self._callback_ids.pop(event, None)
            logger.debug(f"Unsubscribed from {event.value}")

    def publish(self, event: Events, data: Any = None):
        """Publish an event to all subscribers (synchronously)."""
        self._stats["events_published"] += 1
        self._dispatch(event, data)

    def _dispatch(self, event: Events, data: Any):
        """
        Dispatch event to subscribers.

        Lock released before callback execution so callbacks may publish.
        """
        callbacks_to_call = []
        with self._sub_lock:
            if event in self._subscribers:
                alive_entries = []
                for cb_id, ref in self._subscribers[event]:
                    callback = self._resolve_callback(ref)
                    if callback is not None:
                        callbacks_to_call.append(callback)
                        alive_entries.append((cb_id, ref))
                    elif event in self._callback_ids:
                        self._callback_ids[event].pop(cb_id, None)
                self._subscribers[event] = alive_entries

        for callback in callbacks_to_call:
            try:
                callback({"name": event.value, "data": data})
                self._stats["events_processed"] += 1
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Error in callback for {event.value}: {e}", exc_info=True)

    @staticmethod
    def _callback_id(callback: Callable) -> int:
        # Bound methods are recreated on each attribute access; key on (obj, func)
        if hasattr(callback, "__self__") and hasattr(callback, "__func__"):
            return hash((id(callback.__self__), id(callback.__func__)))
        return id(callback)

    @staticmethod
    def _make_ref(callback: Callable):
        try:
            if hasattr(callback, "__self__") and hasattr(callback, "__func__"):
                return weakref.WeakMethod(callback)
            return weakref.ref(callback)
        except TypeError:
            # Not weak-referenceable (e.g. builtins, partials), store directly
            return callback

    @staticmethod
    def _resolve_callback(ref):
        """Resolve weak or direct callback reference"""
        if isinstance(ref, weakref.ReferenceType):
            return ref()
        if callable(ref):
            return ref
        return None

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics including processing counters."""
        with self._sub_lock:
            stats = {
                "subscriber_count": sum(len(entries) for entries in self._subscribers.values()),
                "event_types": len(self._subscribers),
            }
            stats.update(self._stats)
            return stats

    def has_subscribers(self, event: Events) -> bool:
        """Return True if there are any live subscribers for an event."""
        with self._sub_lock:
            entries = self._subscribers.get(event, [])
            return any(self._resolve_callback(ref) is not None for _, ref in entries)

    def clear_all(self):
        """Clear all subscribers (for testing/cleanup)."""
        with self._sub_lock:
            self._subscribers.clear()
            self._callback_ids.clear()
            logger.debug("All subscribers cleared")


# Global instance
event_bus = EventBus()
