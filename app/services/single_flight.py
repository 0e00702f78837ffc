from __future__ import annotations

import asyncio
import itertools
import time
from typing import Callable

from pydantic import BaseModel

from app.errors import WatchdogTimeout

IDLE = "IDLE"
IN_FLIGHT = "IN_FLIGHT"


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class GuardState(BaseModel):
    state: str = IDLE
    attempt_id: int | None = None
    entered_at: float | None = None
    deadline_at: float | None = None
    source: str = "bootstrap"
    watchdog_resets: int = 0
    last_anomaly: str | None = None


class Admission(BaseModel):
    attempt_id: int
    deadline_at: float


class SingleFlightGuard:
    """Admit-or-reject guard: at most one acquisition in flight, no queueing.

    Each admission arms a watchdog tied to its attempt id. The watchdog only
    resets the guard if that attempt is still the current one, so a timer
    left over from an old attempt never releases a newer holder.
    """

    def __init__(
        self,
        deadline_sec: float = 90.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.deadline_sec = deadline_sec
        self._clock = clock
        self._state = GuardState()
        self._ids = itertools.count(1)
        self._watchdog: asyncio.TimerHandle | None = None
        self._owner: asyncio.Task | None = None

    @property
    def in_flight(self) -> bool:
        return self._state.state == IN_FLIGHT

    def _expired(self, now: float) -> bool:
        return self._state.deadline_at is not None and now >= self._state.deadline_at

    def _to_idle(self, source: str) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._owner = None
        self._state.state = IDLE
        self._state.attempt_id = None
        self._state.entered_at = None
        self._state.deadline_at = None
        self._state.source = source

    def _arm_watchdog(self, attempt_id: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the deadline is still enforced lazily by try_enter
            return
        self._watchdog = loop.call_later(self.deadline_sec, self._on_deadline, attempt_id)

    def _on_deadline(self, attempt_id: int) -> None:
        if self._state.attempt_id != attempt_id or not self.in_flight:
            return
        self._record_watchdog_reset(attempt_id)

    def _record_watchdog_reset(self, attempt_id: int) -> None:
        anomaly = WatchdogTimeout(attempt_id, self.deadline_sec)
        self._to_idle("watchdog")
        self._state.watchdog_resets += 1
        self._state.last_anomaly = str(anomaly)
        print(f"[GUARD][watchdog_reset] attempt_id={attempt_id} error={anomaly}", flush=True)

    def try_enter(self) -> Admission | None:
        now = self._clock()
        if self.in_flight:
            if not self._expired(now):
                return None
            self._record_watchdog_reset(self._state.attempt_id)

        attempt_id = next(self._ids)
        self._state.state = IN_FLIGHT
        self._state.attempt_id = attempt_id
        self._state.entered_at = now
        self._state.deadline_at = now + self.deadline_sec
        self._state.source = "acquisition"
        self._owner = _current_task()
        self._arm_watchdog(attempt_id)
        return Admission(attempt_id=attempt_id, deadline_at=self._state.deadline_at)

    def exit(self, attempt_id: int) -> bool:
        """Return the guard to IDLE. No-op when the attempt is no longer current."""
        if not self.in_flight or self._state.attempt_id != attempt_id:
            return False
        self._to_idle("acquisition-complete")
        return True

    def force_reset(self, source: str) -> bool:
        if not self.in_flight:
            return False
        print(
            f"[GUARD][force_reset] attempt_id={self._state.attempt_id} source={source}",
            flush=True,
        )
        self._to_idle(source)
        return True

    def reset_if_orphaned(self, source: str) -> bool:
        """Reset only when the holding task finished without running its cleanup."""
        owner = self._owner
        if not self.in_flight or owner is None or not owner.done():
            return False
        return self.force_reset(source)

    def status(self) -> GuardState:
        return self._state.model_copy(deep=True)
