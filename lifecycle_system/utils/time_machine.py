# lifecycle_system/utils/time_machine.py
"""
Clock used by every lifecycle service.

Real time by default; a virtual time can be pinned for tests and for admin
dry-runs of the scheduled jobs. All values are naive UTC datetimes, matching
what the database columns store.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def to_naive_utc(value: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TimeMachine:
    """Injectable clock with optional virtual time."""

    def __init__(self, virtualTime: Optional[datetime] = None):
        self._virtualTime: Optional[datetime] = None
        self._isTestMode = False
        if virtualTime is not None:
            self.setTime(virtualTime)

    @property
    def now(self) -> datetime:
        """Current naive UTC time (virtual if pinned)."""
        if self._isTestMode and self._virtualTime is not None:
            return self._virtualTime
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @property
    def currentMonth(self) -> str:
        """Current month as YYYY-MM."""
        return self.now.strftime('%Y-%m')

    @property
    def isTestMode(self) -> bool:
        return self._isTestMode

    def setTime(self, virtualTime: datetime) -> None:
        """Pin the clock to a virtual time."""
        virtualTime = to_naive_utc(virtualTime)
        self._virtualTime = virtualTime
        self._isTestMode = True
        logger.info(f"TimeMachine pinned to {virtualTime.isoformat()}")

    def advance(self, **kwargs) -> datetime:
        """Move the pinned clock forward by a timedelta(**kwargs)."""
        self.setTime(self.now + timedelta(**kwargs))
        return self.now

    def resetToRealTime(self) -> None:
        """Return to real time."""
        self._virtualTime = None
        self._isTestMode = False
        logger.info("TimeMachine reset to real time")


# Process-wide default clock
timeMachine = TimeMachine()
