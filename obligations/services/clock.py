"""
Clock collaborator.

The engine never calls date.today() directly; "now" is injected so
month boundaries and paydays can be tested and replayed.
"""

from abc import ABC, abstractmethod
from datetime import date


class Clock(ABC):
    """Supplies the current date."""
    
    @abstractmethod
    def today(self) -> date:
        pass


class SystemClock(Clock):
    def today(self) -> date:
        return date.today()


class FixedClock(Clock):
    """A clock stuck on one date. Use `set()` to move it."""
    
    def __init__(self, current: date):
        self._current = current
    
    def today(self) -> date:
        return self._current
    
    def set(self, current: date) -> None:
        self._current = current
