"""
Debounced reducer for bursty readiness events.

Session layers typically emit several state changes in quick succession
(token refresh, profile fetch, role lookup). ``DebouncedStateReducer``
waits for a quiet period and publishes only the last state of the burst.
"""

import asyncio
import inspect
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger

from .models import ReadinessState

Publisher = Callable[[ReadinessState], Any]
Enricher = Callable[[ReadinessState], Awaitable[ReadinessState]]


class DebouncedStateReducer:
    """Owns one pending timer; at most one commit per quiet window.

    ``on_event`` must be called from within a running event loop.
    """

    def __init__(self,
                 publish: Publisher,
                 delay: float = 0.1,
                 enrich: Optional[Enricher] = None):
        self.publish = publish
        self.delay = delay
        self.enrich = enrich
        self.logger = get_logger("loadcache.debounce")

        self._timer: Optional[asyncio.Task] = None
        self._committing: Optional[asyncio.Task] = None
        self._sequence = 0
        self._published_sequence = 0
        self._closed = False
        self.commit_count = 0
        self.event_count = 0
        self.last_committed: Optional[ReadinessState] = None

    @property
    def pending(self) -> bool:
        """True while a timer is waiting to fire."""
        return self._timer is not None and not self._timer.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def on_event(self, state: ReadinessState) -> None:
        """Restart the quiet period with ``state`` as the candidate commit."""
        if self._closed:
            self.logger.debug("Readiness event after close ignored")
            return

        self.event_count += 1
        self._sequence += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait_then_commit(state, self._sequence))

    async def _wait_then_commit(self, state: ReadinessState, sequence: int) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        if self._closed:
            return
        # The timer has fired; from here on a new event starts a new window
        # instead of cancelling this commit.
        self._timer = None
        self._committing = asyncio.current_task()
        try:
            await self.commit(state, sequence)
        finally:
            if self._committing is asyncio.current_task():
                self._committing = None

    async def commit(self, state: ReadinessState, sequence: Optional[int] = None) -> Optional[ReadinessState]:
        """Enrich and publish ``state``. Superseded commits are dropped."""
        if sequence is None:
            self._sequence += 1
            sequence = self._sequence

        settled = state
        if self.enrich is not None and state.principal is not None:
            try:
                settled = await self.enrich(state)
            except Exception as exc:
                self.logger.error(
                    "Readiness enrichment failed; publishing without principal",
                    principal_id=state.principal_id,
                    error=str(exc),
                )
                settled = replace(state, principal=None)

        if self._closed:
            return None
        if sequence < self._published_sequence:
            self.logger.debug("Superseded readiness commit dropped", sequence=sequence)
            return None

        self._published_sequence = sequence
        self.commit_count += 1
        self.last_committed = settled
        self.logger.info(
            "Readiness committed",
            initialized=settled.initialized,
            settling=settled.settling,
            principal_id=settled.principal_id,
            events=self.event_count,
            commits=self.commit_count,
        )
        result = self.publish(settled)
        if inspect.isawaitable(result):
            await result
        return settled

    def cancel(self) -> bool:
        """Drop the pending timer, if any. Returns True when one was cancelled."""
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            return True
        return False

    async def close(self) -> None:
        """Cancel everything; nothing publishes after this returns."""
        self._closed = True
        timer = self._timer
        self.cancel()
        committing, self._committing = self._committing, None
        tasks = [task for task in (timer, committing) if task is not None and not task.done()]
        if committing is not None and not committing.done():
            committing.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
