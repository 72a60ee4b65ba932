"""
Core accumulators (backend-agnostic).

Each model is a module of plain functions over a state dataclass:
``transition``, ``merge``, ``final`` (and ``distance`` for Cox).
"""

from . import linregr, cox, cox_intermediate
from .linregr import LinRegrState, LinRegrResult
from .cox import CoxPHState, CoxPHResult
from .cox_intermediate import IntermediateCoxPHState, IntermediateCoxPHResult
from .aggregate import fold, tree_merge, split_shards

__all__ = [
    "linregr",
    "cox",
    "cox_intermediate",
    "LinRegrState",
    "LinRegrResult",
    "CoxPHState",
    "CoxPHResult",
    "IntermediateCoxPHState",
    "IntermediateCoxPHResult",
    "fold",
    "tree_merge",
    "split_shards",
]
