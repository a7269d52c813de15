"""Error taxonomy surfaced by the computation engine and its collaborators."""

from typing import Optional


class EliteStatsError(Exception):
    """Base exception; ``kind`` is the machine-readable taxonomy tag."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if kind:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidInput(EliteStatsError):
    """Malformed request: bad date range, non-positive time, unknown code."""

    kind = "invalid_input"
    status_code = 400


class DataUnavailable(EliteStatsError):
    """The repository could not be reached or failed mid-query."""

    kind = "data_unavailable"
    status_code = 503


class InternalInvariantViolation(EliteStatsError):
    """Source entries contradict each other in a way the engine will not guess around."""

    kind = "internal_invariant_violation"
    status_code = 500
