"""
Exception hierarchy for PyStreamReg.

Every error raised by an accumulator is fatal for the aggregation that
produced it. Nothing here is retried internally.
"""


class PyStreamRegError(Exception):
    """Base class for all PyStreamReg errors."""
    pass


class InvalidInputError(PyStreamRegError, ValueError):
    """Non-finite or malformed observation (or accumulated matrix)."""
    pass


class DomainError(PyStreamRegError, ValueError):
    """Feature vector wider than the accumulator can hold."""
    pass


class IncompatibleStateError(PyStreamRegError, ValueError):
    """
    Two accumulators cannot be combined.

    Raised on width mismatch, and for Cox states on mismatched
    coefficients or time-of-death keys.
    """
    pass


class NoSolutionFoundError(PyStreamRegError, ArithmeticError):
    """Newton step impossible: gradient or Hessian over- or underflowed."""
    pass


class ConvergenceWarning(UserWarning):
    """Iterative fit stopped at its iteration limit."""
    pass


__all__ = [
    "PyStreamRegError",
    "InvalidInputError",
    "DomainError",
    "IncompatibleStateError",
    "NoSolutionFoundError",
    "ConvergenceWarning",
]
