class PlanningError(Exception):
    """Base class for errors raised by plan generation and adaptation."""


class PreconditionError(PlanningError):
    """A required input is missing or unusable; nothing has been written."""
