"""
Session Manager

Client-side session lifecycle: start, resume, countdown and expiry. The
server decides session identity; this class keeps a local countdown driven
by tick() and a bookmark in the key/value store so a restarted client can
resume the same session.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from models import SessionBookmark, SessionData, SessionState

from .event_bus import EventBus, Events, event_bus
from .preferences import KeyValueStore
from .server_service import ServerError, ServerService

logger = logging.getLogger(__name__)

SESSION_BOOKMARK_KEY = "Plinko_Session"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """
    Tracks the current session and its remaining time.

    Events published:
    - SESSION_STARTED: {"session": SessionData}
    - SESSION_RESUMED: {"session": SessionData}
    - TIMER_UPDATED: {"remaining_seconds": float}, every timer_update_interval
    - SESSION_EXPIRED: {"session_id": str}, once per session
    """

    def __init__(
        self,
        server: ServerService,
        preferences: KeyValueStore,
        session_duration_minutes: float = 15.0,
        timer_update_interval: float = 0.25,
        clock: Callable[[], datetime] | None = None,
        bus: EventBus | None = None,
    ):
        self._server = server
        self._preferences = preferences
        self.session_duration_seconds = session_duration_minutes * 60
        self.timer_update_interval = timer_update_interval
        self._now = clock or _utcnow
        self._bus = bus or event_bus

        self.session_id = ""
        self.game_seed = ""
        self.session_start_time: datetime | None = None
        self.remaining_seconds = 0.0
        self._is_active = False
        self._update_timer = 0.0

    # ========== State ==========

    @property
    def is_session_active(self) -> bool:
        return self._is_active

    @property
    def is_session_expired(self) -> bool:
        return self.remaining_seconds <= 0

    @property
    def state(self) -> SessionState:
        if self._is_active:
            return SessionState.ACTIVE
        if self.session_id:
            return SessionState.EXPIRED
        return SessionState.INACTIVE

    def _local_remaining(self) -> float:
        if self.session_start_time is None:
            return 0.0
        elapsed = (self._now() - self.session_start_time).total_seconds()
        return self.session_duration_seconds - elapsed

    # ========== Lifecycle ==========

    def try_restore_session(self) -> bool:
        """
        Restore the bookmarked session, if any.

        Returns:
            True if a bookmark exists and still has time remaining
        """
        if not self._preferences.has_key(SESSION_BOOKMARK_KEY):
            return False

        try:
            bookmark = SessionBookmark.model_validate_json(
                self._preferences.get_string(SESSION_BOOKMARK_KEY)
            )
        except ValidationError as e:
            logger.warning(f"[SessionManager] TryRestoreSession failed: {e}")
            return False

        start = bookmark.session_start_time
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)

        self.session_id = bookmark.session_id
        self.session_start_time = start
        self.remaining_seconds = self._local_remaining()

        if self.remaining_seconds > 0:
            self._is_active = True
            logger.info(
                f"Restored session {self.session_id} ({self.formatted_time_remaining()} left)"
            )
            return True
        return False

    async def start_new_session(self, player_id: str) -> SessionData:
        """
        Ask the server for a fresh session.

        Raises:
            ServerError: The server refused or could not be reached
        """
        try:
            session = await self._server.start_session(player_id)
        except ServerError:
            raise
        except Exception as e:
            logger.error(f"[SessionManager] start_new_session failed: {e}")
            raise ServerError("Failed to connect to server. Please try again.") from e

        self.session_id = session.session_id
        self.session_start_time = session.start_time
        self.game_seed = session.game_seed
        self.remaining_seconds = (session.expiry_time - self._now()).total_seconds()
        self._is_active = True
        self._update_timer = 0.0

        self._save_session_state()
        self._bus.publish(Events.SESSION_STARTED, {"session": session})
        return session

    async def sync_session(self, player_id: str, client_wallet_balance: int = 0) -> SessionData:
        """
        Resume the current session with the server.

        The server may hand back a different session (expired or unknown id),
        in which case SESSION_STARTED is published instead of SESSION_RESUMED.
        On failure, falls back to the local countdown if the session is still
        running; otherwise the error propagates.
        """
        try:
            session = await self._server.sync_session(
                player_id, self.session_id, client_wallet_balance
            )
        except Exception as e:
            logger.warning(f"[SessionManager] sync_session failed: {e}")

            if self._is_active and self.session_start_time is not None:
                self.remaining_seconds = self._local_remaining()
                if self.remaining_seconds > 0:
                    return SessionData(
                        session_id=self.session_id,
                        player_id=player_id,
                        game_seed=self.game_seed,
                        start_time=self.session_start_time,
                        expiry_time=self.session_start_time
                        + timedelta(seconds=self.session_duration_seconds),
                        remaining_seconds=self.remaining_seconds,
                    )
            raise

        if session.session_id != self.session_id:
            self.session_id = session.session_id
            self.session_start_time = session.start_time
            self.game_seed = session.game_seed
            self._bus.publish(Events.SESSION_STARTED, {"session": session})
        else:
            if self.session_start_time is None:
                self.session_start_time = session.start_time
            self.game_seed = session.game_seed or self.game_seed
            self._bus.publish(Events.SESSION_RESUMED, {"session": session})

        if session.remaining_seconds < 0:
            self.remaining_seconds = self._local_remaining()
        elif session.remaining_seconds > 0:
            self.remaining_seconds = session.remaining_seconds
        else:
            self.remaining_seconds = (session.expiry_time - self._now()).total_seconds()

        self._is_active = self.remaining_seconds > 0
        self._update_timer = 0.0

        self._save_session_state()
        return session

    def tick(self, delta_time: float):
        """Advance the countdown; publishes timer updates and expiry"""
        if not self._is_active:
            return

        self.remaining_seconds -= delta_time

        self._update_timer += delta_time
        if self._update_timer >= self.timer_update_interval:
            self._update_timer = 0.0
            self._bus.publish(
                Events.TIMER_UPDATED, {"remaining_seconds": max(0.0, self.remaining_seconds)}
            )

        if self.remaining_seconds <= 0:
            self._expire()

    def end_session(self):
        """End the session now (player quit or server revoked)"""
        self.remaining_seconds = 0.0
        self._expire()

    def _expire(self):
        was_active = self._is_active
        self._is_active = False
        self._clear_session_state()
        if was_active:
            logger.info(f"Session {self.session_id} expired")
            self._bus.publish(Events.SESSION_EXPIRED, {"session_id": self.session_id})

    def time_until_next_session(self) -> float:
        if self._is_active:
            return max(0.0, self.remaining_seconds)
        return 0.0

    def formatted_time_remaining(self) -> str:
        seconds = max(0.0, self.remaining_seconds)
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes:02d}:{secs:02d}"

    # ========== Persistence ==========

    def _save_session_state(self):
        if self.session_start_time is None:
            return
        bookmark = SessionBookmark(
            session_id=self.session_id, session_start_time=self.session_start_time
        )
        self._preferences.set_string(SESSION_BOOKMARK_KEY, bookmark.model_dump_json())
        self._preferences.save()

    def _clear_session_state(self):
        self._preferences.delete_key(SESSION_BOOKMARK_KEY)
        self._preferences.save()
