"""
Error hierarchy for the neural tissue engine.

Every error is local to the call that raised it.  Each concrete class also
derives from the builtin a caller would expect in its place, so code that
catches ``KeyError`` for an unknown neuron or ``ValueError`` for bad input
keeps working.
"""

from __future__ import annotations


class TissueError(Exception):
    """Base class for all engine errors."""


class ConfigError(TissueError, ValueError):
    """Invalid ``BrainBuilderConfig`` (counts exceed population, bad ranges)."""


class NotFoundError(TissueError, KeyError):
    """An id does not resolve to a live object with the expected role."""

    def __str__(self) -> str:
        # KeyError.__str__ wraps the message in quotes
        return Exception.__str__(self)


class RangeError(TissueError, ValueError):
    """Requested sample size exceeds the available population."""


class ParseError(TissueError, ValueError):
    """Malformed serialized brain text or bytes."""


class SimulationError(TissueError, ArithmeticError):
    """A numeric invariant was violated while stepping."""
