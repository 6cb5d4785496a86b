"""Exceptions raised at the persistence and collaborator seams."""


class CoachEngineError(Exception):
    """Base class for engine errors."""


class PlanRevisionConflict(CoachEngineError):
    """A plan write was attempted against a stale revision."""

    def __init__(self, athlete_id: str, expected: int, actual: int):
        self.athlete_id = athlete_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Plan for athlete '{athlete_id}' is at revision {actual}, "
            f"write expected revision {expected}"
        )


class ExternalServiceError(CoachEngineError):
    """An external collaborator (data store, weather, activity source) failed."""
