"""Domain exceptions for the progression engine.

Routes translate these into HTTP errors; services raise them and never
catch them themselves.
"""


class ProgressionError(Exception):
    """Base class for all progression engine errors."""

    pass


class MatchStateError(ProgressionError):
    """Raised when a match status change would break a match invariant
    (starting with an unresolved participant, editing a finished match)."""

    pass


class TiebreakerError(ProgressionError):
    """Base class for tiebreaker workflow errors."""

    pass


class RandomDrawRequired(TiebreakerError):
    """The active rule is ``random``; the organizer must choose an automatic or manual draw."""

    pass


class DrawBudgetExhausted(TiebreakerError):
    """No random draws left for this tournament."""

    def __init__(self, budget: int, used: int):
        self.budget = budget
        self.used = used
        super().__init__(f"Random draw budget exhausted ({used}/{budget} used)")


class TiebreakerNotResolved(TiebreakerError):
    """Finalization attempted while at least one tied group is unresolved."""

    pass


class PersistenceError(ProgressionError):
    """A write-back failed after all retries. In-memory results remain valid."""

    pass
