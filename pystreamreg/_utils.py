"""
Utility functions.
"""

import numpy as np

from .exceptions import InvalidInputError, DomainError

# Width is stored as an unsigned 16-bit field in the packed representation
MAX_WIDTH = np.iinfo(np.uint16).max


def check_vector(x, name='x', dtype=np.float64):
    """Validate a single feature vector."""
    x = np.asarray(x, dtype=dtype)
    if x.ndim != 1:
        raise InvalidInputError(f"{name} must be 1-dimensional")
    if not np.all(np.isfinite(x)):
        raise InvalidInputError(f"{name} contains NaN or Inf")
    return x


def check_scalar(y, name='y'):
    """Validate a scalar response."""
    y = float(y)
    if not np.isfinite(y):
        raise InvalidInputError(f"{name} is not finite")
    return y


def check_array(X, name='X', dtype=np.float64):
    """Validate a block of feature vectors (one per row)."""
    X = np.asarray(X, dtype=dtype)
    if X.ndim != 2:
        raise InvalidInputError(f"{name} must be 2-dimensional")
    if not np.all(np.isfinite(X)):
        raise InvalidInputError(f"{name} contains NaN or Inf")
    return X


def check_width(width: int) -> int:
    """Validate the width of the first row folded into an accumulator."""
    if width == 0:
        raise InvalidInputError("x must contain at least one feature")
    if width > MAX_WIDTH:
        raise DomainError(
            f"Number of independent variables cannot be larger than {MAX_WIDTH}."
        )
    return int(width)


def check_row_width(x: np.ndarray, width: int, name='x'):
    """Validate a row against an already sized accumulator."""
    if x.shape[-1] != width:
        raise InvalidInputError(
            f"{name} has {x.shape[-1]} features, accumulator has width {width}"
        )
