import math
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def get_current_time() -> datetime:
    """
    Get the current time in UTC.

    Returns:
        datetime: The current time in UTC as a naive datetime, matching
        what the database hands back.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def seconds_until(target: datetime, now: datetime) -> int:
    """Whole seconds until ``target``, rounded up; zero once it has passed."""
    remaining = (target - now).total_seconds()
    return max(0, math.ceil(remaining))


def format_wait(seconds: int) -> str:
    """
    Format a wait duration the way lockout messages show it.

    Returns:
        str: A string like "14 minutes and 59 seconds".
    """
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes} minutes and {secs} seconds"
