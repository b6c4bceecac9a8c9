"""
Error types raised by the tournament core.
"""


class TournamentError(Exception):
    """Base class for every error the core raises."""


class ValidationError(TournamentError):
    """Input is invalid. Raised before anything is written."""


class NotFoundError(TournamentError):
    """A referenced record does not exist."""

    def __init__(self, kind: str, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class StateError(TournamentError):
    """The operation is not allowed in the record's current state."""


class PropagationFailure(TournamentError):
    """A completed match could not push its winner into the next match.

    The match itself stays completed; the advancement is retried or queued.
    """

    def __init__(self, match_id: str, reason: str):
        self.match_id = match_id
        self.reason = reason
        super().__init__(f"Could not advance winner of match {match_id}: {reason}")
