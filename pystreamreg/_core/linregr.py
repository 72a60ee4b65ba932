"""
Linear-regression accumulator.

Ordinary least squares over a stream of rows. The accumulator holds only
the sufficient statistics

    n, sum(y), sum(y^2), X'y, X'X

so its size depends on the number of features, never on the number of
rows. Accumulators built over disjoint shards are combined with ``merge``
and reduced to coefficients and diagnostics with ``final``.

Examples
--------
>>> state = LinRegrState()
>>> for y_i, x_i in rows:
...     transition(state, y_i, x_i)
>>> result = final(merge(state, other_shard_state))
>>> result.coef
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass
from scipy import stats

from .._utils import (
    check_vector, check_scalar, check_array, check_width, check_row_width,
)
from ..exceptions import InvalidInputError, IncompatibleStateError


@dataclass
class LinRegrState:
    """
    Transition state for linear regression.

    ``num_rows == 0`` is the identity element of ``merge``; ``width`` and
    the vector/matrix fields stay unset until the first row is folded in.
    """
    num_rows: int = 0
    width: Optional[int] = None
    y_sum: float = 0.0
    y_square_sum: float = 0.0
    X_transp_Y: Optional[np.ndarray] = None   # X'y, shape (width,)
    X_transp_X: Optional[np.ndarray] = None   # X'X, shape (width, width)

    @property
    def is_identity(self) -> bool:
        return self.num_rows == 0

    def initialize(self, width: int):
        """Size the state for ``width`` features. Only called for first row."""
        self.width = width
        self.X_transp_Y = np.zeros(width, dtype=np.float64)
        self.X_transp_X = np.zeros((width, width), dtype=np.float64)

    def copy(self) -> "LinRegrState":
        return LinRegrState(
            num_rows=self.num_rows,
            width=self.width,
            y_sum=self.y_sum,
            y_square_sum=self.y_square_sum,
            X_transp_Y=None if self.X_transp_Y is None else self.X_transp_Y.copy(),
            X_transp_X=None if self.X_transp_X is None else self.X_transp_X.copy(),
        )

    def to_array(self) -> np.ndarray:
        """
        Pack into a flat float64 array.

        Layout:
        - 0: num_rows
        - 1: width
        - 2: y_sum
        - 3: y_square_sum
        - 4: X'y
        - 4 + width + width % 2: X'X

        X'X starts at an even offset so both blocks stay 16-byte aligned.
        """
        if self.is_identity:
            return np.zeros(4, dtype=np.float64)

        w = self.width
        out = np.zeros(array_size(w), dtype=np.float64)
        out[0] = self.num_rows
        out[1] = w
        out[2] = self.y_sum
        out[3] = self.y_square_sum
        out[4:4 + w] = self.X_transp_Y
        start = 4 + w + w % 2
        out[start:start + w * w] = self.X_transp_X.ravel()
        return out

    @classmethod
    def from_array(cls, array) -> "LinRegrState":
        """Inverse of ``to_array``."""
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] < 4:
            raise InvalidInputError("Packed state must be a 1-d array of length >= 4")
        if array[0] == 0:
            return cls()

        w = int(array[1])
        if array.shape[0] != array_size(w):
            raise IncompatibleStateError(
                f"Packed state has length {array.shape[0]}, "
                f"expected {array_size(w)} for width {w}"
            )
        start = 4 + w + w % 2
        return cls(
            num_rows=int(array[0]),
            width=w,
            y_sum=float(array[2]),
            y_square_sum=float(array[3]),
            X_transp_Y=array[4:4 + w].copy(),
            X_transp_X=array[start:start + w * w].reshape(w, w).copy(),
        )


def array_size(width: int) -> int:
    """Length of the packed representation for ``width`` features."""
    return 4 + width + width % 2 + width * width


@dataclass
class LinRegrResult:
    """Linear regression results."""
    coef: np.ndarray          # Coefficients
    r2: float                 # Coefficient of determination
    std_err: np.ndarray       # Standard errors
    t_stats: np.ndarray       # t statistics
    p_values: np.ndarray      # Two-sided p-values
    condition_no: float       # Condition number of X'X

    num_rows: int
    df_residual: int
    ess: float                # Explained sum of squares
    tss: float                # Total sum of squares
    rss: float                # Residual sum of squares
    variance: float           # Mean squared error


def transition(state: LinRegrState, y, x) -> LinRegrState:
    """
    Fold one observation into the state.

    The state is updated in place and returned. It is left untouched if
    the row is rejected.

    Parameters
    ----------
    state : LinRegrState
        Accumulator (identity for the first row)
    y : float
        Response
    x : array_like, shape (width,)
        Feature vector (include a constant 1 for an intercept)

    Raises
    ------
    InvalidInputError
        If ``y`` or ``x`` is not finite, or ``x`` has the wrong length
    DomainError
        If the first ``x`` has more than 65535 features
    """
    # Non-finite input can make the eigensolver loop forever, so it is
    # rejected here rather than at finalization
    y = check_scalar(y, 'y')
    x = check_vector(x, 'x')

    if state.num_rows == 0:
        state.initialize(check_width(x.shape[0]))
    else:
        check_row_width(x, state.width)

    state.num_rows += 1
    state.y_sum += y
    state.y_square_sum += y * y
    state.X_transp_Y += x * y
    state.X_transp_X += np.outer(x, x)
    return state


def transition_batch(state: LinRegrState, y, X) -> LinRegrState:
    """
    Fold a block of observations into the state.

    Equivalent to calling ``transition`` once per row.

    Parameters
    ----------
    state : LinRegrState
        Accumulator
    y : array_like, shape (n,)
        Responses
    X : array_like, shape (n, width)
        Feature vectors, one per row
    """
    y = check_vector(y, 'y')
    X = check_array(X, 'X')
    if X.shape[0] != y.shape[0]:
        raise InvalidInputError(
            f"X has {X.shape[0]} rows but y has {y.shape[0]} values"
        )
    if y.shape[0] == 0:
        return state

    if state.num_rows == 0:
        state.initialize(check_width(X.shape[1]))
    else:
        check_row_width(X, state.width, 'X')

    state.num_rows += y.shape[0]
    state.y_sum += float(y.sum())
    state.y_square_sum += float(y @ y)
    state.X_transp_Y += X.T @ y
    state.X_transp_X += X.T @ X
    return state


def merge(left: LinRegrState, right: LinRegrState) -> LinRegrState:
    """
    Combine two states built over disjoint rows.

    If either operand is the identity, the other is returned as is.
    Otherwise a new state holding the field-wise sums is returned.

    Raises
    ------
    IncompatibleStateError
        If the states have different widths
    """
    if left.num_rows == 0:
        return right
    if right.num_rows == 0:
        return left

    if left.width != right.width:
        raise IncompatibleStateError(
            f"Incompatible transition states: width {left.width} vs {right.width}"
        )

    return LinRegrState(
        num_rows=left.num_rows + right.num_rows,
        width=left.width,
        y_sum=left.y_sum + right.y_sum,
        y_square_sum=left.y_square_sum + right.y_square_sum,
        X_transp_Y=left.X_transp_Y + right.X_transp_Y,
        X_transp_X=left.X_transp_X + right.X_transp_X,
    )


def final(state: LinRegrState, backend=None) -> LinRegrResult:
    """
    Compute coefficients and diagnostics from a fully merged state.

    Coefficients are ``pinv(X'X) X'y``, so rank-deficient designs still
    get a (minimum-norm) solution. The sums of squares assume the model
    contains an intercept.

    Parameters
    ----------
    state : LinRegrState
        Fully merged accumulator (not modified)
    backend : BackendBase, optional
        Decomposition service (default: CPU)

    Returns
    -------
    LinRegrResult

    Raises
    ------
    InvalidInputError
        If the state is empty or its sums are not finite
    """
    if state.num_rows == 0:
        raise InvalidInputError("Cannot finalize a state that has seen no rows")

    if not (np.all(np.isfinite(state.X_transp_X))
            and np.all(np.isfinite(state.X_transp_Y))):
        raise InvalidInputError("Design matrix is not finite.")

    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')

    decomposition = backend.decompose(state.X_transp_X)
    inverse_of_X_transp_X = decomposition.pseudo_inverse

    coef = inverse_of_X_transp_X @ state.X_transp_Y

    n = state.num_rows
    width = state.width
    y_mean_square = (state.y_sum * state.y_sum) / n

    # Explained (regression) and total sum of squares
    ess = float(state.X_transp_Y @ coef) - y_mean_square
    tss = state.y_square_sum - y_mean_square

    # Both are non-negative in exact arithmetic, not necessarily in floating
    # point. tss is known more accurately than ess, so ess is capped by it.
    if tss < 0:
        tss = 0.0
    if ess < 0:
        ess = 0.0
    if ess > tss:
        ess = tss

    # tss == 0: the regression fits the data perfectly
    r2 = 1.0 if tss == 0 else ess / tss

    rss = tss - ess
    df_residual = n - width
    variance = rss / df_residual if df_residual > 0 else np.nan

    # Negative diagonal entries of a PSD pseudo-inverse are eigensolver noise
    diag = np.diag(inverse_of_X_transp_X)
    std_err = np.where(diag < 0, 0.0, np.sqrt(variance * np.maximum(diag, 0.0)))

    # 0/0 is an exact zero coefficient: t = 0. x/0 is +-inf on purpose.
    with np.errstate(divide='ignore', invalid='ignore'):
        t_stats = np.where((coef == 0) & (std_err == 0), 0.0, coef / std_err)

    if df_residual > 0:
        p_values = 2 * stats.t.sf(np.abs(t_stats), df_residual)
    else:
        p_values = np.full(width, np.nan)

    return LinRegrResult(
        coef=coef,
        r2=float(r2),
        std_err=std_err,
        t_stats=t_stats,
        p_values=p_values,
        condition_no=decomposition.condition_number,
        num_rows=n,
        df_residual=df_residual,
        ess=float(ess),
        tss=float(tss),
        rss=float(rss),
        variance=float(variance),
    )


__all__ = [
    "LinRegrState",
    "LinRegrResult",
    "array_size",
    "transition",
    "transition_batch",
    "merge",
    "final",
]
