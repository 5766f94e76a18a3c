"""Clock collaborators used for date-bounded offers."""
from datetime import date


class SystemClock:
    """Today's date from the host clock."""

    def now(self) -> date:
        return date.today()


class FixedClock:
    """Clock frozen at a given date (tests, replays of stored orders)."""

    def __init__(self, today: date):
        self.today = today

    def now(self) -> date:
        return self.today
