"""
PyStreamReg: streaming, mergeable regression aggregates.

Linear and Cox proportional-hazards regression over data that never has to
fit in memory: rows are folded into fixed-size sufficient-statistics
accumulators that can be built in parallel shards and merged.

Copyright (C) 2024 SGCX
Licensed under GPL-3.0
"""

__version__ = "1.0.0"

# Import main user-facing API
from .lm import lm, LinearModel
from .coxph import coxph, CoxPH

# Accumulators (for embedding in other execution engines)
from ._core import (
    linregr,
    cox,
    cox_intermediate,
    LinRegrState,
    CoxPHState,
    IntermediateCoxPHState,
)
from .exceptions import (
    PyStreamRegError,
    InvalidInputError,
    DomainError,
    IncompatibleStateError,
    NoSolutionFoundError,
    ConvergenceWarning,
)

# Import backend utilities (for advanced users)
from ._backends import get_backend, list_available_backends

__all__ = [
    'lm',
    'LinearModel',
    'coxph',
    'CoxPH',
    'linregr',
    'cox',
    'cox_intermediate',
    'LinRegrState',
    'CoxPHState',
    'IntermediateCoxPHState',
    'PyStreamRegError',
    'InvalidInputError',
    'DomainError',
    'IncompatibleStateError',
    'NoSolutionFoundError',
    'ConvergenceWarning',
    'get_backend',
    'list_available_backends',
]
