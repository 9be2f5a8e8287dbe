"""
Background reaper for wedged channel processing flags.

A crash between claiming a channel and releasing it leaves the channel busy
forever; this worker periodically releases flags older than the configured
timeout, independent of message traffic.
"""

import logging
import threading
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import OperationalError

from chatrelay.config import settings
from chatrelay.db.connection import SessionFactory, SessionLocal

from .channel_queue import ChannelMessageQueue

logger = logging.getLogger(__name__)


class StaleProcessingReaper:
    """
    Background worker that releases stale channel processing flags.

    Failures are logged and retried on the next interval; they never stop
    the loop.
    """

    def __init__(
        self,
        interval: Optional[float] = None,
        timeout_seconds: Optional[int] = None,
        session_factory: SessionFactory = SessionLocal,
    ):
        """
        Initialize the reaper.

        Args:
            interval: Seconds between sweeps
            timeout_seconds: Release busy flags older than this
            session_factory: Callable returning a new Session
        """
        self.interval = (
            interval if interval is not None else settings.reaper_interval_seconds
        )
        self.timeout = timedelta(
            seconds=(
                timeout_seconds
                if timeout_seconds is not None
                else settings.stale_processing_timeout_seconds
            )
        )
        self.session_factory = session_factory
        self._running = False
        self._stop_event = threading.Event()
        self._sweeps = 0
        self._released = 0

    def run(self) -> None:
        """
        Main reaper loop.

        Sweeps immediately, then once per interval until stopped.
        """
        logger.info("Stale processing reaper starting")
        self._running = True

        while not self._stop_event.is_set():
            self.sweep()
            self._stop_event.wait(self.interval)

        logger.info(
            f"Stale processing reaper stopped. "
            f"Sweeps: {self._sweeps}, Released: {self._released}"
        )
        self._running = False

    def sweep(self) -> int:
        """
        Run one sweep.

        Returns:
            Number of channels released (0 when the sweep failed)
        """
        self._sweeps += 1
        session = self.session_factory()
        try:
            released = ChannelMessageQueue(session).reap_stale(self.timeout)
            session.commit()
        except OperationalError as e:
            session.rollback()
            logger.warning(f"Reaper sweep skipped (DB unavailable): {e}")
            return 0
        except Exception as e:
            session.rollback()
            logger.error(f"Error during reaper sweep: {e}", exc_info=True)
            return 0
        finally:
            session.close()

        self._released += released
        return released

    def stop(self) -> None:
        """Signal the reaper to stop gracefully."""
        logger.info("Stale processing reaper stop requested")
        self._stop_event.set()

    @property
    def is_running(self) -> bool:
        """Check if the reaper is currently running."""
        return self._running

    @property
    def stats(self) -> dict[str, object]:
        return {
            "running": self._running,
            "sweeps": self._sweeps,
            "released": self._released,
        }


# Singleton reaper instance for app lifecycle management
_reaper: Optional[StaleProcessingReaper] = None
_reaper_thread: Optional[threading.Thread] = None


def start_reaper(session_factory: SessionFactory = SessionLocal) -> None:
    """Start the global reaper in a background thread."""
    global _reaper, _reaper_thread

    if _reaper is not None and _reaper.is_running:
        logger.warning("Stale processing reaper is already running")
        return

    _reaper = StaleProcessingReaper(session_factory=session_factory)
    _reaper_thread = threading.Thread(
        target=_reaper.run,
        daemon=True,
        name="stale-processing-reaper",
    )
    _reaper_thread.start()
    logger.info("Started stale processing reaper background thread")


def stop_reaper(timeout: float = 10.0) -> None:
    """Stop the global reaper gracefully."""
    global _reaper, _reaper_thread

    if _reaper is None:
        return

    _reaper.stop()

    if _reaper_thread is not None and _reaper_thread.is_alive():
        _reaper_thread.join(timeout=timeout)
        if _reaper_thread.is_alive():
            logger.warning(
                f"Stale processing reaper thread did not stop within {timeout}s timeout"
            )

    _reaper = None
    _reaper_thread = None
    logger.info("Stopped stale processing reaper")


def get_reaper_stats() -> dict[str, object]:
    """Get statistics from the global reaper."""
    if _reaper is None:
        return {"running": False}
    return _reaper.stats
