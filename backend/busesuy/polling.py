"""Live-arrival polling sessions.

A PollingSession belongs to whatever view is showing an itinerary. It is
either idle or active; start() and cancel() are its only lifecycle
operations. LiveSessionManager keeps one session per view id.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from busesuy.config import DEFAULT_POLL_INTERVAL
from busesuy.errors import AuthFailure
from busesuy.models import Itinerary, LiveSnapshot, StepLiveStatus

logger = logging.getLogger("busesuy.polling")

IDLE = "idle"
ACTIVE = "active"

AUTHORITY_UNAVAILABLE = "authority_unavailable"
PASS_FAILED = "pass_failed"

PassRunner = Callable[[Itinerary], Awaitable[list[StepLiveStatus]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollingSession:
    """Re-runs poll passes for one itinerary every `interval` seconds.

    A tick that finds the previous pass still running is skipped, not queued.
    cancel() clears all derived state before returning.
    """

    def __init__(
        self,
        view_id: str,
        itinerary: Itinerary,
        run_pass: PassRunner,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_auth_failure: Optional[Callable[[], None]] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.session_id = str(uuid.uuid4())[:12]
        self.view_id = view_id
        self.itinerary = itinerary
        self.run_pass = run_pass
        self.interval = interval
        self.on_auth_failure = on_auth_failure
        self.now = now

        self.state = IDLE
        self.steps: list[StepLiveStatus] = []
        self.passes_completed = 0
        self.passes_skipped = 0
        self.updated_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

        self._timer: Optional[asyncio.Task] = None
        self._pass_task: Optional[asyncio.Task] = None
        # Bumped on every start/cancel so late results from an old run are dropped
        self._generation = 0

    @property
    def is_active(self) -> bool:
        return self.state == ACTIVE

    def start(self) -> None:
        if self._timer is not None:
            raise RuntimeError(f"Session {self.session_id} already started; cancel() it first")

        self._generation += 1
        self.state = ACTIVE
        self.last_error = None
        self._timer = asyncio.create_task(self._timer_loop())
        logger.info(f"Live polling started for view {self.view_id} (session {self.session_id}, every {self.interval:.0f}s)")

    def cancel(self) -> list[asyncio.Task]:
        """Stop polling and discard derived state. Returns the tasks that were cancelled."""
        self._generation += 1
        cancelled = []
        current = asyncio.current_task()
        for task in (self._timer, self._pass_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                cancelled.append(task)
        self._timer = None
        self._pass_task = None

        was_active = self.state == ACTIVE
        self.state = IDLE
        self.steps = []
        self.updated_at = None
        if was_active:
            logger.info(f"Live polling cancelled for view {self.view_id} (session {self.session_id})")
        return cancelled

    def tick(self) -> Optional[asyncio.Task]:
        """Launch a poll pass unless one is already in flight."""
        if self.state != ACTIVE:
            return None
        if self._pass_task is not None and not self._pass_task.done():
            self.passes_skipped += 1
            logger.info(f"Skipping poll for view {self.view_id}: previous pass still running")
            return None
        self._pass_task = asyncio.create_task(self._run_once(self._generation))
        return self._pass_task

    async def poll_now(self) -> bool:
        """Run one pass immediately and wait for it. False if it was skipped."""
        task = self.tick()
        if task is None:
            return False
        await task
        return True

    async def _timer_loop(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    async def _run_once(self, generation: int) -> None:
        try:
            steps = await self.run_pass(self.itinerary)
        except AuthFailure as e:
            if generation != self._generation:
                return
            logger.error(f"STM authentication failed for view {self.view_id}, going idle: {e}")
            self.cancel()
            self.last_error = AUTHORITY_UNAVAILABLE
            if self.on_auth_failure:
                self.on_auth_failure()
            return
        except Exception:
            logger.exception(f"Poll pass failed for view {self.view_id} (session {self.session_id})")
            if generation != self._generation:
                return
            # Nothing from an earlier pass may outlive a failed one
            self.steps = []
            self.updated_at = None
            self.last_error = PASS_FAILED
            return

        if generation != self._generation or self.state != ACTIVE:
            # Cancelled or restarted while this pass was in flight
            return

        self.steps = steps
        self.last_error = None
        self.passes_completed += 1
        self.updated_at = self.now()

    def snapshot(self) -> LiveSnapshot:
        return LiveSnapshot(
            session_id=self.session_id,
            view_id=self.view_id,
            state=self.state,
            passes_completed=self.passes_completed,
            passes_skipped=self.passes_skipped,
            updated_at=self.updated_at,
            last_error=self.last_error,
            steps=list(self.steps),
        )


class LiveSessionManager:
    """One polling session per view; polling only while the STM API is reachable."""

    def __init__(
        self,
        run_pass: PassRunner,
        interval: float = DEFAULT_POLL_INTERVAL,
        api_available: bool = True,
    ):
        self.run_pass = run_pass
        self.interval = interval
        self.api_available = api_available
        self.sessions: dict[str, PollingSession] = {}
        self._pending: set[asyncio.Task] = set()

    def start_session(self, view_id: str, itinerary: Itinerary) -> PollingSession:
        """Replace the view's session. The previous one is cancelled before the new one starts."""
        previous = self.sessions.pop(view_id, None)
        if previous:
            self._track(previous.cancel())

        session = PollingSession(
            view_id=view_id,
            itinerary=itinerary,
            run_pass=self.run_pass,
            interval=self.interval,
            on_auth_failure=lambda: self.set_api_status(False),
        )
        self.sessions[view_id] = session

        if self.api_available:
            session.start()
        else:
            session.last_error = AUTHORITY_UNAVAILABLE
            logger.info(f"STM API unavailable, session for view {view_id} stays idle")
        return session

    def get_session(self, view_id: str) -> Optional[PollingSession]:
        return self.sessions.get(view_id)

    def end_session(self, view_id: str) -> bool:
        session = self.sessions.pop(view_id, None)
        if session:
            self._track(session.cancel())
            logger.info(f"Live session ended for view {view_id}")
            return True
        return False

    def set_api_status(self, available: bool) -> None:
        if available == self.api_available:
            return
        self.api_available = available

        if not available:
            logger.warning(f"STM API unavailable, idling {len(self.sessions)} live session(s)")
            for session in self.sessions.values():
                self._track(session.cancel())
                session.last_error = AUTHORITY_UNAVAILABLE
        else:
            logger.info(f"STM API reachable again, resuming {len(self.sessions)} live session(s)")
            for session in self.sessions.values():
                if not session.is_active:
                    session.start()

    def get_active_sessions_count(self) -> int:
        return sum(1 for s in self.sessions.values() if s.is_active)

    def _track(self, tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def shutdown(self) -> None:
        for view_id in list(self.sessions):
            self.end_session(view_id)
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("Live session manager stopped")
