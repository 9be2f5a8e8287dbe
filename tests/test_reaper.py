"""
Tests for the stale processing reaper.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from chatrelay.models.db import ChannelProcessingState
from chatrelay.queue.channel_queue import ChannelMessageQueue
from chatrelay.queue.reaper import StaleProcessingReaper


def _claim(session_factory, channel_id: str, minutes_ago: int) -> None:
    with session_factory() as session:
        ChannelMessageQueue(session).begin_processing(channel_id, "worker")
        session.execute(
            update(ChannelProcessingState)
            .where(ChannelProcessingState.channel_id == channel_id)
            .values(
                processing_started_at=datetime.now(timezone.utc)
                - timedelta(minutes=minutes_ago)
            )
        )
        session.commit()


def _is_processing(session_factory, channel_id: str) -> bool:
    with session_factory() as session:
        return ChannelMessageQueue(session).is_processing(channel_id)


class TestSweep:
    """Tests for a single reaper sweep."""

    def test_sweep_releases_stale_channels(self, session_factory):
        _claim(session_factory, "stale", minutes_ago=10)
        _claim(session_factory, "fresh", minutes_ago=1)
        reaper = StaleProcessingReaper(
            interval=60, timeout_seconds=300, session_factory=session_factory
        )

        assert reaper.sweep() == 1

        assert _is_processing(session_factory, "stale") is False
        assert _is_processing(session_factory, "fresh") is True
        assert reaper.stats == {"running": False, "sweeps": 1, "released": 1}

    def test_sweep_survives_database_errors(self):
        session = Mock()
        session.execute.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        reaper = StaleProcessingReaper(
            interval=60, timeout_seconds=300, session_factory=lambda: session
        )

        assert reaper.sweep() == 0
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_sweep_survives_unexpected_errors(self):
        session = Mock()
        session.execute.side_effect = RuntimeError("bug")
        reaper = StaleProcessingReaper(
            interval=60, timeout_seconds=300, session_factory=lambda: session
        )

        assert reaper.sweep() == 0
        session.close.assert_called_once()


class TestReaperLoop:
    """Tests for the background loop."""

    def test_run_sweeps_until_stopped(self, session_factory):
        _claim(session_factory, "stale", minutes_ago=10)
        reaper = StaleProcessingReaper(
            interval=0.01, timeout_seconds=300, session_factory=session_factory
        )
        thread = threading.Thread(target=reaper.run, daemon=True)
        thread.start()

        deadline = time.monotonic() + 5
        while reaper.stats["released"] == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        reaper.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert reaper.is_running is False
        assert reaper.stats["released"] == 1
        assert _is_processing(session_factory, "stale") is False
