"""
Window Sweep Scheduler

Closes conversations whose 24-hour window lapsed and keeps the
`is_within_window` flag of open threads current. Runs in-process every
`window_sweep_interval_minutes`; the cron endpoint triggers the same sweep
on demand.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import get_engage_settings
from .conversation_window import ConversationWindowTracker

logger = logging.getLogger(__name__)


class WindowSweepScheduler:
    """
    Periodic conversation window sweep.
    """

    def __init__(self, tracker: Optional[ConversationWindowTracker] = None):
        self.settings = get_engage_settings()
        self.tracker = tracker or ConversationWindowTracker()
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._initialized = False

    async def initialize(self):
        """Start the sweep scheduler."""
        if self._initialized:
            return

        minutes = self.settings.window_sweep_interval_minutes
        self.scheduler.add_job(
            self.sweep,
            IntervalTrigger(minutes=minutes),
            id="conversation_window_sweep",
            name="Close lapsed conversation windows",
            replace_existing=True,
        )

        self.scheduler.start()
        self._initialized = True
        logger.info(f"Conversation window sweep started (every {minutes} minutes)")

    async def shutdown(self):
        """Stop the sweep scheduler."""
        if self._initialized:
            self.scheduler.shutdown(wait=False)
            self._initialized = False
            logger.info("Conversation window sweep stopped")

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Close lapsed conversations, then refresh window flags. Returns closed count."""
        now = now or datetime.utcnow()
        try:
            closed = self.tracker.close_expired(now)
            refreshed = self.tracker.refresh_flags(now)
        except Exception as e:
            logger.error(f"Conversation window sweep failed: {e}")
            return 0

        if closed or refreshed:
            logger.info(f"Window sweep: {closed} closed, {refreshed} flags refreshed")
        return closed


# Singleton instance
_window_scheduler: Optional[WindowSweepScheduler] = None


def get_window_scheduler() -> WindowSweepScheduler:
    """Get or create the sweep scheduler singleton."""
    global _window_scheduler
    if _window_scheduler is None:
        _window_scheduler = WindowSweepScheduler()
    return _window_scheduler
