"""
Host-side aggregation helpers.

The accumulators only define transition/merge/final. These helpers play
the part of the execution engine: fold rows into a state, split work into
shards, and reduce shard states with a merge tree.
"""

import numpy as np
from typing import Callable, Iterable, List, Sequence


def fold(transition: Callable, state, rows: Iterable):
    """
    Fold rows into ``state`` one at a time.

    Each element of ``rows`` is a tuple of the arguments ``transition``
    takes after the state, e.g. ``(y, x)`` for linear regression.
    """
    for args in rows:
        state = transition(state, *args)
    return state


def tree_merge(merge: Callable, states: Sequence):
    """
    Reduce states pairwise, as a balanced binary tree.

    Any bracketing gives the same result up to rounding; the tree keeps
    the depth of floating-point additions logarithmic in the shard count.
    """
    level: List = list(states)
    if not level:
        raise ValueError("tree_merge needs at least one state")

    while len(level) > 1:
        merged = [merge(level[i], level[i + 1]) for i in range(0, len(level) - 1, 2)]
        if len(level) % 2:
            merged.append(level[-1])
        level = merged
    return level[0]


def split_shards(n_rows: int, n_shards: int) -> List[slice]:
    """Contiguous, near-equal row ranges; empty ranges are kept."""
    if n_shards < 1:
        raise ValueError(f"n_shards must be >= 1, got {n_shards}")
    bounds = np.linspace(0, n_rows, n_shards + 1).astype(np.int64)
    return [slice(int(lo), int(hi)) for lo, hi in zip(bounds[:-1], bounds[1:])]


__all__ = ["fold", "tree_merge", "split_shards"]
