"""
Intermediate Cox proportional-hazards accumulator.

Collects, for the rows sharing one time of death, the sums

    sum exp(x'b),   sum exp(x'b) x,   sum exp(x'b) x x'

at a fixed coefficient vector ``b``. These are the per-death-time blocks
a stratified or tie-corrected Cox fit combines; ``final`` does no Newton
update and just hands the sums on.
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass

from .._utils import check_vector, check_scalar, check_width, check_row_width
from ..exceptions import InvalidInputError, IncompatibleStateError


@dataclass
class IntermediateCoxPHState:
    """Transition state for the per-death-time sums."""
    num_rows: int = 0
    width: Optional[int] = None
    time_death: float = 0.0                       # key, set on first row
    coef: Optional[np.ndarray] = None             # broadcast, not summed

    exp_coef_x: float = 0.0
    x_exp_coef_x: Optional[np.ndarray] = None
    x_xtrans_exp_coef_x: Optional[np.ndarray] = None

    @property
    def is_identity(self) -> bool:
        return self.num_rows == 0

    def initialize(self, width: int, time_death: float, coef: np.ndarray):
        """Size the state, set its key and zero the sums."""
        self.width = width
        self.time_death = time_death
        self.coef = np.array(coef, dtype=np.float64)
        self.reset()

    def reset(self):
        """Zero the accumulated sums."""
        w = self.width
        self.num_rows = 0
        self.exp_coef_x = 0.0
        self.x_exp_coef_x = np.zeros(w, dtype=np.float64)
        self.x_xtrans_exp_coef_x = np.zeros((w, w), dtype=np.float64)

    def to_array(self) -> np.ndarray:
        """
        Pack into a flat float64 array.

        Layout:
        - 0: num_rows
        - 1: width
        - 2: time_death
        - 3: coef
        - 3 + width: exp_coef_x
        - 4 + width: x_exp_coef_x
        - 4 + 2*width: x_xtrans_exp_coef_x
        """
        if self.width is None:
            return np.zeros(4, dtype=np.float64)

        w = self.width
        out = np.empty(array_size(w), dtype=np.float64)
        out[0] = self.num_rows
        out[1] = w
        out[2] = self.time_death
        out[3:3 + w] = self.coef
        out[3 + w] = self.exp_coef_x
        out[4 + w:4 + 2 * w] = self.x_exp_coef_x
        out[4 + 2 * w:] = self.x_xtrans_exp_coef_x.ravel()
        return out

    @classmethod
    def from_array(cls, array) -> "IntermediateCoxPHState":
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
            time_death=float(array[2]),
            coef=array[3:3 + w].copy(),
            exp_coef_x=float(array[3 + w]),
            x_exp_coef_x=array[4 + w:4 + 2 * w].copy(),
            x_xtrans_exp_coef_x=array[4 + 2 * w:].reshape(w, w).copy(),
        )


def array_size(width: int) -> int:
    """Length of the packed representation for ``width`` features."""
    return 4 + 2 * width + width * width


@dataclass
class IntermediateCoxPHResult:
    """Per-death-time sums."""
    time_death: float
    coef: np.ndarray
    exp_coef_x: float
    x_exp_coef_x: np.ndarray
    x_xtrans_exp_coef_x: np.ndarray


def transition(state: IntermediateCoxPHState, x, time_death, coef=None,
               previous: Optional[IntermediateCoxPHState] = None
               ) -> IntermediateCoxPHState:
    """
    Fold one observation into the state.

    The state is updated in place and returned. It is left untouched if
    the row is rejected.

    Parameters
    ----------
    state : IntermediateCoxPHState
        Accumulator (identity for the first row)
    x : array_like, shape (width,)
        Feature vector
    time_death : float
        Time of death this state is keyed by; every row must carry the
        same value
    coef : array_like, shape (width,), optional
        Coefficients to evaluate ``exp(x'coef)`` at. Required on the first
        row unless ``previous`` supplies them; on later rows it must match.
    previous : IntermediateCoxPHState, optional
        State of the previous pass, read on the first row only

    Raises
    ------
    InvalidInputError
        Non-finite input, wrong length, missing coefficients, or a row
        whose time of death or coefficients differ from the state's
    IncompatibleStateError
        If ``previous`` has a different width
    """
    x = check_vector(x, 'x')
    time_death = check_scalar(time_death, 'time_death')
    if coef is not None:
        coef = check_vector(coef, 'coef')

    if state.num_rows == 0:
        width = check_width(x.shape[0])
        if coef is None:
            if previous is None or previous.coef is None:
                raise InvalidInputError(
                    "coef is required on the first row when no previous state is given"
                )
            if previous.width != width:
                raise IncompatibleStateError(
                    f"Previous state has width {previous.width}, row has {width} features"
                )
            coef = previous.coef
        check_row_width(coef, width, 'coef')
        state.initialize(width, time_death, coef)
    else:
        check_row_width(x, state.width)
        if time_death != state.time_death:
            raise InvalidInputError(
                f"Row has time of death {time_death}, state is keyed by {state.time_death}"
            )
        if coef is not None and not np.array_equal(coef, state.coef):
            raise InvalidInputError("Row coefficients differ from the state's")

    state.num_rows += 1
    with np.errstate(over='ignore'):
        s = float(np.exp(state.coef @ x))

    state.exp_coef_x += s
    state.x_exp_coef_x += s * x
    state.x_xtrans_exp_coef_x += s * np.outer(x, x)
    return state


def merge(left: IntermediateCoxPHState,
          right: IntermediateCoxPHState) -> IntermediateCoxPHState:
    """
    Combine two states with the same key and coefficients.

    Raises
    ------
    IncompatibleStateError
        If width, time of death or coefficients differ
    """
    if left.num_rows == 0:
        return right
    if right.num_rows == 0:
        return left

    if left.width != right.width:
        raise IncompatibleStateError(
            f"Incompatible transition states: width {left.width} vs {right.width}"
        )
    if left.time_death != right.time_death:
        raise IncompatibleStateError(
            f"Incompatible transition states: time of death "
            f"{left.time_death} vs {right.time_death}"
        )
    if not np.array_equal(left.coef, right.coef):
        raise IncompatibleStateError(
            "Incompatible transition states: coefficients differ"
        )

    return IntermediateCoxPHState(
        num_rows=left.num_rows + right.num_rows,
        width=left.width,
        time_death=left.time_death,
        coef=left.coef.copy(),
        exp_coef_x=left.exp_coef_x + right.exp_coef_x,
        x_exp_coef_x=left.x_exp_coef_x + right.x_exp_coef_x,
        x_xtrans_exp_coef_x=left.x_xtrans_exp_coef_x + right.x_xtrans_exp_coef_x,
    )


def final(state: IntermediateCoxPHState) -> Optional[IntermediateCoxPHState]:
    """Pass-through; None if no rows were seen."""
    if state.num_rows == 0:
        return None
    return state


def result(state: IntermediateCoxPHState) -> IntermediateCoxPHResult:
    """Package the sums of a finalized state."""
    if state is None or state.num_rows == 0:
        raise InvalidInputError("No result for a state that has seen no rows")
    return IntermediateCoxPHResult(
        time_death=state.time_death,
        coef=state.coef.copy(),
        exp_coef_x=state.exp_coef_x,
        x_exp_coef_x=state.x_exp_coef_x.copy(),
        x_xtrans_exp_coef_x=state.x_xtrans_exp_coef_x.copy(),
    )


__all__ = [
    "IntermediateCoxPHState",
    "IntermediateCoxPHResult",
    "array_size",
    "transition",
    "merge",
    "final",
    "result",
]
