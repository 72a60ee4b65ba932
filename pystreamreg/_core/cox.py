"""
Cox proportional-hazards accumulator.

One pass over the data is one Newton-Raphson step on the partial
likelihood. Rows must arrive in order of decreasing survival time, so
that the running sums

    S = sum exp(x'b),   H = sum exp(x'b) x,   V = sum exp(x'b) x x'

over the rows seen so far are the risk-set sums of the current row.

Fields fall into two groups:

- inter-iteration: ``coef``, carried from one Newton step to the next;
- intra-iteration: ``S``, ``H``, ``V``, ``grad``, ``hessian`` and
  ``log_likelihood``, which start from zero in every step.

The caller drives the iteration: each step folds all rows with the
previous step's finalized state as ``previous``, merges the shards, calls
``final`` and compares successive finalized states with ``distance``.
Shards folded independently behave as strata: the merged gradient and
Hessian are those of the stratified partial likelihood.
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass
from scipy import stats

from .._utils import check_vector, check_array, check_width, check_row_width
from ..exceptions import (
    InvalidInputError, IncompatibleStateError, NoSolutionFoundError,
)


@dataclass
class CoxPHState:
    """
    Transition state for Cox proportional hazards.

    ``num_rows == 0`` is the identity element of ``merge``.
    """
    num_rows: int = 0
    width: Optional[int] = None
    coef: Optional[np.ndarray] = None          # inter-iteration

    S: float = 0.0
    H: Optional[np.ndarray] = None
    grad: Optional[np.ndarray] = None
    log_likelihood: float = 0.0
    V: Optional[np.ndarray] = None
    hessian: Optional[np.ndarray] = None

    @property
    def is_identity(self) -> bool:
        return self.num_rows == 0

    def initialize(self, width: int, coef: Optional[np.ndarray] = None):
        """
        Size the state and zero every intra-iteration field.

        ``coef`` is the coefficient vector inherited from the previous
        Newton step (zero for the first step).
        """
        self.width = width
        self.coef = (np.zeros(width, dtype=np.float64) if coef is None
                     else np.array(coef, dtype=np.float64))
        self.reset()

    def reset(self):
        """Zero the intra-iteration fields, keeping ``coef``."""
        w = self.width
        self.num_rows = 0
        self.S = 0.0
        self.H = np.zeros(w, dtype=np.float64)
        self.grad = np.zeros(w, dtype=np.float64)
        self.log_likelihood = 0.0
        self.V = np.zeros((w, w), dtype=np.float64)
        self.hessian = np.zeros((w, w), dtype=np.float64)

    @classmethod
    def with_coef(cls, coef) -> "CoxPHState":
        """
        State carrying only a coefficient vector.

        Fold rows into it, or pass it as ``previous``, to start the first
        Newton step from ``coef`` instead of zero.
        """
        coef = check_vector(coef, 'coef')
        state = cls()
        state.initialize(check_width(coef.shape[0]), coef)
        return state

    def copy(self) -> "CoxPHState":
        def _copy(a):
            return None if a is None else a.copy()

        return CoxPHState(
            num_rows=self.num_rows,
            width=self.width,
            coef=_copy(self.coef),
            S=self.S,
            H=_copy(self.H),
            grad=_copy(self.grad),
            log_likelihood=self.log_likelihood,
            V=_copy(self.V),
            hessian=_copy(self.hessian),
        )

    def to_array(self) -> np.ndarray:
        """
        Pack into a flat float64 array.

        Layout:
        - 0: num_rows
        - 1: width
        - 2: coef
        - 2 + width: S
        - 3 + width: H
        - 3 + 2*width: grad
        - 3 + 3*width: log_likelihood
        - 4 + 3*width: V
        - 4 + 3*width + width^2: hessian
        """
        if self.width is None:
            return np.zeros(4, dtype=np.float64)

        w = self.width
        out = np.empty(array_size(w), dtype=np.float64)
        out[0] = self.num_rows
        out[1] = w
        out[2:2 + w] = self.coef
        out[2 + w] = self.S
        out[3 + w:3 + 2 * w] = self.H
        out[3 + 2 * w:3 + 3 * w] = self.grad
        out[3 + 3 * w] = self.log_likelihood
        out[4 + 3 * w:4 + 3 * w + w * w] = self.V.ravel()
        out[4 + 3 * w + w * w:] = self.hessian.ravel()
        return out

    @classmethod
    def from_array(cls, array) -> "CoxPHState":
        """Inverse of ``to_array``."""
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] < 4:
            raise InvalidInputError("Packed state must be a 1-d array of length >= 4")

        w = int(array[1])
        if w == 0:
            return cls()
        if array.shape[0] != array_size(w):
            raise IncompatibleStateError(
                f"Packed state has length {array.shape[0]}, "
                f"expected {array_size(w)} for width {w}"
            )
        return cls(
            num_rows=int(array[0]),
            width=w,
            coef=array[2:2 + w].copy(),
            S=float(array[2 + w]),
            H=array[3 + w:3 + 2 * w].copy(),
            grad=array[3 + 2 * w:3 + 3 * w].copy(),
            log_likelihood=float(array[3 + 3 * w]),
            V=array[4 + 3 * w:4 + 3 * w + w * w].reshape(w, w).copy(),
            hessian=array[4 + 3 * w + w * w:].reshape(w, w).copy(),
        )


def array_size(width: int) -> int:
    """Length of the packed representation for ``width`` features."""
    return 4 + 3 * width + 2 * width * width


@dataclass
class CoxPHResult:
    """Cox proportional-hazards results."""
    coef: np.ndarray          # Coefficients
    log_likelihood: float     # Partial log-likelihood of the last pass
    std_err: np.ndarray       # Standard errors from the observed information
    z_stats: np.ndarray       # Wald statistics
    p_values: np.ndarray      # Two-sided normal p-values
    condition_no: float       # Condition number of the Hessian
    num_rows: int


def _start_step(state: CoxPHState, width: int, previous: Optional[CoxPHState]):
    """
    Size a fresh state, inheriting ``coef`` from the previous step.

    Without ``previous``, a state already seeded by ``with_coef`` keeps
    its own coefficients.
    """
    source = previous if previous is not None else state
    if source.width is None:
        state.initialize(width)
        return
    if source.width != width:
        raise IncompatibleStateError(
            f"Previous state has width {source.width}, row has {width} features"
        )
    state.initialize(width, source.coef)


def transition(state: CoxPHState, x, previous: Optional[CoxPHState] = None,
               event: bool = True) -> CoxPHState:
    """
    Fold one observation into the state.

    The state is updated in place and returned. It is left untouched if
    the row is rejected.

    Parameters
    ----------
    state : CoxPHState
        Accumulator (identity for the first row)
    x : array_like, shape (width,)
        Feature vector
    previous : CoxPHState, optional
        Finalized state of the previous Newton step. Only read on the
        first row, to inherit its coefficients.
    event : bool
        False for a censored row: it joins the risk set but adds nothing
        to the gradient, Hessian or log-likelihood.

    Raises
    ------
    InvalidInputError
        If ``x`` is not finite or has the wrong length
    DomainError
        If the first ``x`` has more than 65535 features
    IncompatibleStateError
        If ``previous`` has a different width
    """
    x = check_vector(x, 'x')

    if state.num_rows == 0:
        _start_step(state, check_width(x.shape[0]), previous)
    else:
        check_row_width(x, state.width)

    state.num_rows += 1

    # exp overflow is reported by final() as NoSolutionFoundError
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        xc = float(state.coef @ x)
        s = float(np.exp(xc))

        state.S += s
        state.H += s * x
        state.V += s * np.outer(x, x)

        if event:
            state.grad += x - state.H / state.S
            state.hessian += (np.outer(state.H, state.H) / (state.S * state.S)
                              - state.V / state.S)
            state.log_likelihood += xc - float(np.log(state.S))

    return state


def transition_batch(state: CoxPHState, X, previous: Optional[CoxPHState] = None,
                     events=None) -> CoxPHState:
    """
    Fold a block of observations into the state.

    Rows are taken in the given order and the result equals (up to
    rounding) one ``transition`` call per row. The running risk-set sums
    become cumulative sums, and the ``V / S`` terms of the Hessian are
    regrouped by reverse cumulative sums of ``1 / S``, so the block costs
    O(n * width^2).

    Parameters
    ----------
    state : CoxPHState
        Accumulator
    X : array_like, shape (n, width)
        Feature vectors, in order of decreasing time
    previous : CoxPHState, optional
        Finalized state of the previous Newton step
    events : array_like of bool, shape (n,), optional
        Event indicators (default: every row is an event)
    """
    X = check_array(X, 'X')
    n = X.shape[0]
    if events is None:
        d = np.ones(n, dtype=np.float64)
    else:
        d = np.asarray(events, dtype=bool).astype(np.float64)
        if d.shape != (n,):
            raise InvalidInputError(
                f"events must have shape ({n},), got {d.shape}"
            )
    if n == 0:
        return state

    if state.num_rows == 0:
        _start_step(state, check_width(X.shape[1]), previous)
    else:
        check_row_width(X, state.width, 'X')

    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        xc = X @ state.coef
        s = np.exp(xc)
        sx = X * s[:, np.newaxis]

        # Risk-set sums as seen by each row
        S_run = state.S + np.cumsum(s)
        H_run = state.H + np.cumsum(sx, axis=0)
        H_over_S = H_run / S_run[:, np.newaxis]

        state.grad += (d[:, np.newaxis] * (X - H_over_S)).sum(axis=0)
        state.log_likelihood += float(d @ (xc - np.log(S_run)))

        # sum_i d_i V_i / S_i with V_i = V_0 + sum_{j<=i} s_j x_j x_j'
        tail = np.cumsum((d / S_run)[::-1])[::-1]
        V_over_S = state.V * tail[0] + (sx * tail[:, np.newaxis]).T @ X
        state.hessian += (H_over_S * d[:, np.newaxis]).T @ H_over_S - V_over_S

        state.S = float(S_run[-1])
        state.H = H_run[-1].copy()
        state.V += sx.T @ X

    state.num_rows += n
    return state


def merge(left: CoxPHState, right: CoxPHState) -> CoxPHState:
    """
    Combine two states of the same Newton step.

    If either operand is the identity, the other is returned as is.
    Otherwise a new state holding the field-wise sums of the
    intra-iteration fields is returned; ``coef`` must agree and is carried
    over, not summed.

    Raises
    ------
    IncompatibleStateError
        If widths differ, or the states were seeded with different
        coefficients (i.e. belong to different Newton steps)
    """
    if left.num_rows == 0:
        return right
    if right.num_rows == 0:
        return left

    if left.width != right.width:
        raise IncompatibleStateError(
            f"Incompatible transition states: width {left.width} vs {right.width}"
        )
    if not np.array_equal(left.coef, right.coef):
        raise IncompatibleStateError(
            "Incompatible transition states: coefficients differ, "
            "states belong to different Newton steps"
        )

    return CoxPHState(
        num_rows=left.num_rows + right.num_rows,
        width=left.width,
        coef=left.coef.copy(),
        S=left.S + right.S,
        H=left.H + right.H,
        grad=left.grad + right.grad,
        log_likelihood=left.log_likelihood + right.log_likelihood,
        V=left.V + right.V,
        hessian=left.hessian + right.hessian,
    )


def final(state: CoxPHState, backend=None) -> Optional[CoxPHState]:
    """
    Take one Newton step: ``coef - hessian^+ grad`` (step size 1).

    Returns a new state with the updated ``coef``; the intra-iteration
    fields are kept so that ``distance`` can compare log-likelihoods.
    Returns None if no rows were seen.

    Raises
    ------
    NoSolutionFoundError
        If the gradient or Hessian is not finite
    """
    if state.num_rows == 0:
        return None

    if not (np.all(np.isfinite(state.hessian)) and np.all(np.isfinite(state.grad))):
        raise NoSolutionFoundError(
            "Over- or underflow in intermediate calculation. "
            "Input data is likely of poor numerical condition."
        )

    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')

    decomposition = backend.decompose(state.hessian)

    updated = state.copy()
    updated.coef = state.coef - decomposition.pseudo_inverse @ state.grad
    return updated


def distance(left: CoxPHState, right: CoxPHState) -> float:
    """Absolute difference in log-likelihood between two states."""
    return abs(left.log_likelihood - right.log_likelihood)


def result(state: CoxPHState, backend=None) -> CoxPHResult:
    """
    Coefficients and diagnostics of a finalized state.

    Standard errors come from the observed information ``-hessian``. The
    Hessian was evaluated at the coefficients the pass started from, which
    at convergence agree with ``coef`` to within the tolerance.
    """
    if state is None or state.num_rows == 0:
        raise InvalidInputError("No result for a state that has seen no rows")

    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')

    decomposition = backend.decompose(-state.hessian)
    diag = np.diag(decomposition.pseudo_inverse)

    std_err = np.where(diag < 0, np.nan, np.sqrt(np.maximum(diag, 0.0)))
    with np.errstate(divide='ignore', invalid='ignore'):
        z_stats = np.where((state.coef == 0) & (std_err == 0), 0.0,
                           state.coef / std_err)
    p_values = 2 * stats.norm.sf(np.abs(z_stats))

    return CoxPHResult(
        coef=state.coef.copy(),
        log_likelihood=state.log_likelihood,
        std_err=std_err,
        z_stats=z_stats,
        p_values=p_values,
        condition_no=decomposition.condition_number,
        num_rows=state.num_rows,
    )


__all__ = [
    "CoxPHState",
    "CoxPHResult",
    "array_size",
    "transition",
    "transition_batch",
    "merge",
    "final",
    "distance",
    "result",
]
