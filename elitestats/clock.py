"""Source of "today" for the engine; tests and historical queries pin it."""

from datetime import date
from typing import Optional

_FIXED_TODAY: Optional[date] = None


def today() -> date:
    return _FIXED_TODAY or date.today()


def set_today(value: Optional[date]) -> None:
    """Pin ``today()`` to ``value``; pass ``None`` to follow the system clock again."""
    global _FIXED_TODAY
    _FIXED_TODAY = value
