"""Exceptions raised by the engine for contract violations.

Rejected selections are not errors: they come back as (False, reason).
"""


class InvariantViolation(AssertionError):
    """A mutation would leave the selection store in an invalid state."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ReentrantMutationError(RuntimeError):
    """A change listener tried to mutate the store during notification."""
