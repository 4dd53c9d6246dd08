"""Exception types shared by the orchestration core.

Transport and structural failures are hard failures of an agent turn;
rules-engine input errors only cover malformed numbers.
"""


class CompletionError(RuntimeError):
    """The external reasoning service failed to return usable text."""


class RecoveryError(ValueError):
    """All structured-output recovery stages failed for a response."""

    def __init__(self, length: int, prefix: str) -> None:
        self.length = length
        self.prefix = prefix
        super().__init__(f"Failed to recover JSON record. Length: {length}. Start: {prefix}...")


class PayloadError(ValueError):
    """A message's kind, topic and payload do not form a known variant."""


class RulesInputError(ValueError):
    """Malformed numeric input (NaN or negative) passed to the rules engine."""


class TurnFailedError(RuntimeError):
    """An agent turn failed on the reasoning service or on recovery."""

    def __init__(self, agent_name: str, cause: Exception) -> None:
        self.agent_name = agent_name
        self.cause = cause
        super().__init__(f"{agent_name} turn failed: {type(cause).__name__}: {str(cause)[:180]}")


class SpeciesLookupError(RuntimeError):
    """The species provider could not return data for an id."""


class SessionOverError(RuntimeError):
    """The session cannot advance: the team is knocked out or the quest ended."""
