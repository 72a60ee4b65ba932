"""
Cox proportional-hazards regression with R-style interface and output.

The fit is a Newton-Raphson loop in which every iteration is one full
aggregation pass: rows are folded into per-stratum accumulators seeded with
the previous iteration's coefficients, the accumulators are merged and the
merged state is finalized into the next coefficients. Iterations are
strictly sequential; the rows inside one iteration are not.
"""

import logging
import warnings
import numpy as np
import pandas as pd
from typing import Optional, Union, List
from scipy import stats

from ._backends import get_backend
from ._core import cox, cox_intermediate
from ._core.aggregate import tree_merge
from ._utils import check_vector
from .exceptions import ConvergenceWarning, InvalidInputError

logger = logging.getLogger(__name__)


def _resolve_column(values, data, what):
    if isinstance(values, str):
        if data is None:
            raise ValueError(f"Must provide data when {what} is a string")
        return np.asarray(data[values].values), values
    return np.asarray(values), what


class CoxPH:
    """
    Fit a Cox proportional-hazards model (like R's coxph()).

    Rows within a stratum are processed in order of decreasing time. Tied
    times are taken in input order, without a Breslow or Efron correction.

    Examples
    --------
    >>> from pystreamreg import coxph
    >>> model = coxph(time='futime', X=['age', 'ecog'], data=ovarian,
    ...               event='fustat')
    >>> model.summary()
    >>> model.coef
    >>> model.hazard_ratios
    """

    def __init__(
        self,
        time: Union[str, np.ndarray],
        X: Union[List[str], np.ndarray],
        data: Optional[pd.DataFrame] = None,
        event: Optional[Union[str, np.ndarray]] = None,
        strata: Optional[Union[str, np.ndarray]] = None,
        init: Optional[np.ndarray] = None,
        max_iter: int = 25,
        tol: float = 1e-6,
        backend: str = 'auto',
        use_fp64: Optional[bool] = None
    ):
        """
        Fit Cox model.

        Parameters
        ----------
        time : str or array
            Survival (or censoring) time
        X : list of str or array
            Covariates (no intercept: it cancels in the partial likelihood)
        data : DataFrame, optional
            Dataset containing the named columns
        event : str or array, optional
            Event indicator (1 = death, 0 = censored). Default: all deaths.
        strata : str or array, optional
            Stratum labels; each stratum has its own baseline hazard and
            is aggregated into its own accumulator
        init : array, optional
            Starting coefficients (default: zeros)
        max_iter : int
            Maximum number of Newton iterations
        tol : float
            Stop when successive log-likelihoods differ by less than this
        backend : str
            Decomposition backend: 'auto', 'cpu', 'gpu'
        use_fp64 : bool, optional
            Passed to get_backend
        """
        time_values, self.time_name = _resolve_column(time, data, 'time')
        self.time_values = check_vector(time_values, 'time')

        if isinstance(X, list) and all(isinstance(x, str) for x in X):
            if data is None:
                raise ValueError("Must provide data when X is list of strings")
            X_values = data[X].values
            self.X_names = list(X)
        else:
            X_values = np.asarray(X)
            if X_values.ndim == 1:
                X_values = X_values[:, np.newaxis]
            self.X_names = [f'x{i}' for i in range(X_values.shape[1])]
        self.X_values = np.asarray(X_values, dtype=np.float64)

        n = len(self.time_values)
        if self.X_values.shape[0] != n:
            raise ValueError(f"X has {self.X_values.shape[0]} rows but time has {n} values")
        if n == 0:
            raise InvalidInputError("No observations")

        if event is None:
            self.event_values = np.ones(n, dtype=bool)
        else:
            event_values = check_vector(_resolve_column(event, data, 'event')[0], 'event')
            self.event_values = event_values.astype(bool)
        if strata is None:
            strata_values = np.zeros(n, dtype=np.int64)
        else:
            strata_values = _resolve_column(strata, data, 'strata')[0]
            if pd.isna(strata_values).any():
                raise InvalidInputError("strata contains missing labels")

        if max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {max_iter}")

        self.n_obs = n
        self.n_events = int(self.event_values.sum())
        self.max_iter = max_iter
        self.tol = tol
        self.backend = get_backend(backend, use_fp64=use_fp64)

        self._groups = self._stratum_order(strata_values)
        self._fit(init)

    def _stratum_order(self, strata_values) -> list:
        """Row indices per stratum, by decreasing time."""
        groups = []
        for label in pd.unique(strata_values):
            idx = np.flatnonzero(strata_values == label)
            order = np.argsort(-self.time_values[idx], kind='stable')
            groups.append(idx[order])
        return groups

    def _newton_pass(self, previous: cox.CoxPHState) -> cox.CoxPHState:
        """One full aggregation pass: fold every stratum, merge, finalize."""
        states = [
            cox.transition_batch(
                cox.CoxPHState(), self.X_values[idx],
                previous=previous, events=self.event_values[idx]
            )
            for idx in self._groups
        ]
        merged = tree_merge(cox.merge, states)
        current = cox.final(merged, backend=self.backend)
        if current is None:
            raise InvalidInputError("No observations were folded")
        return current

    def _fit(self, init):
        p = self.X_values.shape[1]
        if init is None:
            init = np.zeros(p)
        previous = cox.CoxPHState.with_coef(init)

        last = None
        self.converged = False
        for iteration in range(1, self.max_iter + 1):
            current = self._newton_pass(previous)
            if last is not None:
                dist = cox.distance(current, last)
                logger.debug("Iteration %d: log-likelihood %.10g, distance %.3e",
                             iteration, current.log_likelihood, dist)
                if dist < self.tol:
                    self.converged = True
                    break
            else:
                logger.debug("Iteration %d: log-likelihood %.10g",
                             iteration, current.log_likelihood)
            last = current
            previous = current

        self.n_iter = iteration
        if not self.converged:
            warnings.warn(
                f"Newton-Raphson did not converge in {self.max_iter} iterations",
                ConvergenceWarning
            )

        self.state = current
        result = cox.result(current, backend=self.backend)
        self.coefficients = result.coef
        self.log_likelihood = result.log_likelihood
        self.std_errors = result.std_err
        self.z_values = result.z_stats
        self.pvalues = result.p_values
        self.condition_number = result.condition_no

    @property
    def coef(self):
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coefficients, index=self.X_names)

    @property
    def hazard_ratios(self):
        """exp(coef) (pandas Series)."""
        return pd.Series(np.exp(self.coefficients), index=self.X_names)

    def conf_int(self, alpha: float = 0.05):
        """
        Wald confidence intervals for coefficients.

        Returns
        -------
        DataFrame
            Columns 'lower' and 'upper'
        """
        z_crit = stats.norm.ppf(1 - alpha/2)
        return pd.DataFrame({
            'lower': self.coefficients - z_crit * self.std_errors,
            'upper': self.coefficients + z_crit * self.std_errors,
        }, index=self.X_names)

    def predict(self, newdata: Union[pd.DataFrame, np.ndarray],
                type: str = 'lp') -> np.ndarray:
        """
        Linear predictor ('lp') or relative risk ('risk') for new data.
        """
        if isinstance(newdata, pd.DataFrame):
            X_new = newdata[self.X_names].values
        else:
            X_new = np.asarray(newdata, dtype=np.float64)
            if X_new.ndim == 1:
                X_new = X_new[:, np.newaxis]

        lp = X_new @ self.coefficients
        if type == 'lp':
            return lp
        elif type == 'risk':
            return np.exp(lp)
        raise ValueError(f"Unknown prediction type: '{type}' (use 'lp' or 'risk')")

    def death_time_sums(self) -> list:
        """
        Per-death-time sums at the fitted coefficients.

        For each distinct time at which an event occurred, the rows dying
        at that time are aggregated into one intermediate accumulator.

        Returns
        -------
        list of IntermediateCoxPHResult, ordered by time
        """
        results = []
        deaths = np.flatnonzero(self.event_values)
        for t in np.unique(self.time_values[deaths]):
            state = cox_intermediate.IntermediateCoxPHState()
            for i in deaths[self.time_values[deaths] == t]:
                cox_intermediate.transition(state, self.X_values[i], t, self.coefficients)
            results.append(cox_intermediate.result(cox_intermediate.final(state)))
        return results

    def summary(self):
        """Print summary of the fit (like R's summary.coxph)."""
        print()
        print("="*80)
        print("COX PROPORTIONAL HAZARDS RESULTS")
        print("="*80)
        print()

        print(f"Time variable: {self.time_name}")
        print(f"n = {self.n_obs}, number of events = {self.n_events}")
        print(f"Strata: {len(self._groups)}")
        print()

        print("Coefficients:")
        print("-"*80)
        print(f"{'Variable':<20} {'coef':>10} {'exp(coef)':>10} {'se(coef)':>10} {'z':>8} {'Pr(>|z|)':>12}")
        print("-"*80)

        for i, name in enumerate(self.X_names):
            p = self.pvalues[i]
            p_str = 'NA' if np.isnan(p) else (f"{p:.4f}" if p >= 0.0001 else "<.0001")
            print(f"{name:<20} {self.coefficients[i]:>10.4f} {np.exp(self.coefficients[i]):>10.4f} "
                  f"{self.std_errors[i]:>10.4f} {self.z_values[i]:>8.3f} {p_str:>12}")

        print("-"*80)
        print()
        print(f"Partial log-likelihood:  {self.log_likelihood:.4f}")
        status = "converged" if self.converged else "did not converge"
        print(f"Newton-Raphson:          {status} after {self.n_iter} iterations")
        print()
        print(f"Backend: {self.backend.name}")
        print("="*80)
        print()

    def __repr__(self):
        return (f"CoxPH(n={self.n_obs}, events={self.n_events}, "
                f"p={len(self.X_names)}, converged={self.converged})")


def coxph(time, X, data=None, **kwargs):
    """
    Fit Cox proportional-hazards model (convenience function).

    Parameters
    ----------
    time : str or array
        Survival time
    X : list of str or array
        Covariates
    data : DataFrame, optional
        Dataset
    **kwargs
        Additional arguments passed to CoxPH (event, strata, tol, ...)

    Returns
    -------
    CoxPH
        Fitted model object
    """
    return CoxPH(time=time, X=X, data=data, **kwargs)
