"""Unit tests for the autosave scheduler.

Tests cover:
- Dirty gating and the submit suppression of a single tick
- Starting, stopping and idempotent start of the background task
- Failed saves and closed sessions
"""

import asyncio

import pytest

from formsession.autosave import AUTOSAVE_SOURCE, AutosaveScheduler
from formsession.config import SessionConfig
from formsession.session import FormSession
from formsession.types import EventType
from tests.fakes import FakePersistence, simple_template

FAST = SessionConfig(autosave_interval=0.01)


def make_session(persistence=None, config=FAST):
    return FormSession(simple_template(), persistence=persistence or FakePersistence(), config=config)


class TestTick:
    """Test a single autosave check."""

    def test_clean_session_not_saved(self):
        """Should not save when nothing changed."""
        session = make_session()
        scheduler = AutosaveScheduler(session, interval=1)
        assert asyncio.run(scheduler.tick()) is False
        assert session.persistence.drafts == []

    def test_dirty_session_saved(self):
        """Should save a draft tagged with the autosave source."""
        session = make_session()
        session.set_value("notes", "crane on site")
        scheduler = AutosaveScheduler(session, interval=1)

        assert asyncio.run(scheduler.tick()) is True
        assert [d.form_data for d in session.persistence.drafts] == [{"name": "", "notes": "crane on site"}]
        saved = session.events[-1]
        assert saved.type == EventType.DRAFT_SAVED
        assert saved.payload["source"] == AUTOSAVE_SOURCE

    def test_skipped_while_submitting(self):
        """Should skip and report the tick while a submit is in flight."""
        persistence = FakePersistence()
        session = make_session(persistence)
        session.set_value("name", "Ann")
        scheduler = AutosaveScheduler(session, interval=1)

        async def _run():
            persistence.gate = asyncio.Event()
            submit = asyncio.ensure_future(session.submit())
            await asyncio.sleep(0)
            saved = await scheduler.tick()
            persistence.gate.set()
            await submit
            return saved

        assert asyncio.run(_run()) is False
        assert persistence.drafts == []
        skipped = [e for e in session.events if e.type == EventType.AUTOSAVE_SKIPPED]
        assert [e.payload for e in skipped] == [{"reason": "submitting"}]

    def test_closed_session_not_saved(self):
        """Should never save after submit or cancel."""
        session = make_session()
        session.set_value("name", "Ann")
        asyncio.run(session.submit())
        assert asyncio.run(AutosaveScheduler(session, interval=1).tick()) is False

        cancelled = make_session()
        cancelled.set_value("notes", "x")
        asyncio.run(cancelled.cancel())
        assert asyncio.run(AutosaveScheduler(cancelled, interval=1).tick()) is False
        assert cancelled.persistence.drafts == []

    def test_failed_save(self):
        """Should leave last_saved_at alone when the store fails."""
        session = make_session(FakePersistence(fail_drafts=True))
        session.set_value("notes", "x")
        assert asyncio.run(AutosaveScheduler(session, interval=1).tick()) is False
        assert session.last_saved_at is None
        assert session.events[-1].type == EventType.DRAFT_SAVE_FAILED

    def test_interval_must_be_positive(self):
        """Should reject a zero interval."""
        with pytest.raises(ValueError):
            AutosaveScheduler(make_session(), interval=0)


class TestSchedulerTask:
    """Test the background task lifecycle."""

    def test_saves_periodically_until_stopped(self):
        """Should save on each tick and stop saving once stopped."""
        session = make_session()
        session.set_value("notes", "x")

        async def _run():
            scheduler = session.start_autosave()
            await asyncio.sleep(0.05)
            await session.stop_autosave()
            count = len(session.persistence.drafts)
            await asyncio.sleep(0.03)
            return scheduler, count

        scheduler, count = asyncio.run(_run())
        assert count >= 1
        assert len(session.persistence.drafts) == count
        assert scheduler.is_running is False

    def test_start_is_idempotent(self):
        """Should keep the same task when started twice."""
        session = make_session()

        async def _run():
            scheduler = session.start_autosave()
            task = scheduler._task
            assert session.start_autosave() is scheduler
            assert scheduler._task is task
            await session.stop_autosave()

        asyncio.run(_run())

    def test_disabled_or_without_persistence(self):
        """Should not start when disabled or without a store."""
        disabled = make_session(config=SessionConfig(autosave_enabled=False))
        offline = FormSession(simple_template(), config=FAST)

        async def _run():
            return disabled.start_autosave(), offline.start_autosave()

        assert asyncio.run(_run()) == (None, None)

    def test_stopped_by_submit(self):
        """Should stop the task when the submit succeeds."""
        session = make_session()
        session.set_value("name", "Ann")

        async def _run():
            scheduler = session.start_autosave()
            assert scheduler.is_running is True
            await session.submit()
            return scheduler

        scheduler = asyncio.run(_run())
        assert scheduler.is_running is False
        assert session.persistence.drafts == []

    def test_stopped_by_cancel(self):
        """Should stop the task when the session is cancelled."""
        session = make_session()
        session.set_value("notes", "x")

        async def _run():
            scheduler = session.start_autosave()
            await session.cancel()
            await asyncio.sleep(0.03)
            return scheduler

        scheduler = asyncio.run(_run())
        assert scheduler.is_running is False
        assert session.persistence.drafts == []
