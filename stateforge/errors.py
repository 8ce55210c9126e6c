from typing import Optional


class StateforgeError(Exception):
    """Base class for every error raised by the automaton core."""


class ValidationError(StateforgeError):
    """
    Raised when an automaton breaks one of its structural invariants.

    Attributes:
        invariant: Short name of the violated invariant, one of
            'transition-shape', 'transition-endpoints', 'initial-state' or 'unique-ids'
        message: Human readable description of the violation
    """

    def __init__(self, invariant: str, message: str):
        super().__init__(f"{invariant}: {message}")
        self.invariant = invariant
        self.message = message


class InterchangeError(StateforgeError):
    """Raised for malformed or semantically inconsistent import payloads."""


class UnsupportedConversionError(StateforgeError):
    """Raised when no conversion is defined between two modes."""

    def __init__(self, source: str, target: str, detail: Optional[str] = None):
        message = f"No conversion defined from '{source}' to '{target}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.source = source
        self.target = target


class SimulationBudgetExceeded(StateforgeError):
    """Raised by callers that need a yes/no answer when a run hit its step or size budget."""

    def __init__(self, steps: int, configurations: int):
        super().__init__(
            f"Simulation budget exceeded after {steps} steps ({configurations} live configurations)"
        )
        self.steps = steps
        self.configurations = configurations
