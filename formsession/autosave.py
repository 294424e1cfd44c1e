"""Periodic, dirty-gated draft saving.

The scheduler wakes up every ``interval`` seconds and asks its session to
persist a draft when there is something new to save. It never writes on its
own: persistence always goes through ``FormSession.save_draft``, which holds
the session's single-writer lock, so an autosave can not interleave with a
submit.

Usage:
    >>> scheduler = AutosaveScheduler(session, interval=30.0)  # doctest: +SKIP
    >>> scheduler.start()  # doctest: +SKIP
    >>> await scheduler.stop()  # doctest: +SKIP
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from formsession.config import DEFAULT_AUTOSAVE_INTERVAL
from formsession.types import EventType

if TYPE_CHECKING:
    from formsession.session import FormSession

logger = logging.getLogger(__name__)

AUTOSAVE_SOURCE = "autosave"


class AutosaveScheduler:
    """Recurring autosave task bound to one session.

    Each tick:

    - stops the scheduler when the session is closed
    - skips (and reports ``autosave.skipped``) while a submit is in flight
    - skips quietly when nothing changed since the baseline
    - otherwise awaits ``session.save_draft(source="autosave")``

    A failed save is handled by the session (logged, reported as
    ``draft.save_failed``) and the next tick simply tries again.

    Attributes:
        session: The session whose drafts are saved
        interval: Seconds between ticks
    """

    def __init__(self, session: "FormSession", interval: float = DEFAULT_AUTOSAVE_INTERVAL):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.session = session
        self.interval = interval
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Calling it on a running scheduler does nothing.

        Must be called from inside a running event loop.
        """
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Autosave started for session %s every %ss", self.session.session_id, self.interval)

    async def stop(self) -> None:
        """Cancel the task and wait until it has finished."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Stopped from inside a tick; the loop exits once the session is closed.
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Autosave stopped for session %s", self.session.session_id)

    async def tick(self) -> bool:
        """Run one autosave check. Returns True when a draft was saved."""
        session = self.session
        if session.is_closed:
            return False
        if session.is_submitting:
            session.record_event(EventType.AUTOSAVE_SKIPPED, {"reason": "submitting"})
            return False
        if not session.is_dirty:
            return False
        return await session.save_draft(source=AUTOSAVE_SOURCE)

    async def _run(self) -> None:
        while not self.session.is_closed:
            await asyncio.sleep(self.interval)
            await self.tick()


__all__ = [
    "AUTOSAVE_SOURCE",
    "AutosaveScheduler",
]
