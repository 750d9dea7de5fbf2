"""Exception types raised by flowwright."""

from typing import List, Optional


class FlowwrightError(Exception):
    """Base class for all flowwright errors."""


class StructuralError(FlowwrightError, ValueError):
    """The flow graph is malformed (dangling edge, broken pair, unknown kind...).

    Raised while loading or validating a graph, before any step executes.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or [message]


class ConditionError(FlowwrightError):
    """A branch or loop condition could not be evaluated."""


class ExpressionError(ConditionError):
    """A custom boolean expression is unparseable or uses a disallowed construct."""


class ActionError(FlowwrightError):
    """A step failed for a reason detected by the engine itself."""


class StepAssertionError(ActionError, AssertionError):
    """An assertion-style step did not hold."""


class RunStopped(FlowwrightError):
    """Raised internally when a stop was requested between two steps."""
