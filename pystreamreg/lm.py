"""
Linear regression with R-style interface and output.

Rows are never held as one design matrix: they are folded into small
sufficient-statistics accumulators, shard by shard or chunk by chunk, and
only the merged accumulator is finalized.
"""

import logging
import warnings
import numpy as np
import pandas as pd
from typing import Optional, Union, List, Iterable
from scipy import stats

from ._backends import get_backend
from ._core import linregr
from ._core.aggregate import tree_merge, split_shards

logger = logging.getLogger(__name__)

# Above this, coefficients of X'X-based solutions lose most of their digits
CONDITION_NUMBER_THRESHOLD = 1e12


def _resolve_response(y, data):
    if isinstance(y, str):
        if data is None:
            raise ValueError("Must provide data when y is a string")
        return np.asarray(data[y].values, dtype=np.float64), y
    return np.asarray(y, dtype=np.float64), 'y'


def _resolve_design(X, data):
    if isinstance(X, list) and all(isinstance(x, str) for x in X):
        if data is None:
            raise ValueError("Must provide data when X is list of strings")
        return np.asarray(data[X].values, dtype=np.float64), list(X)
    X_values = np.asarray(X, dtype=np.float64)
    if X_values.ndim == 1:
        X_values = X_values[:, np.newaxis]
    return X_values, [f'x{i}' for i in range(X_values.shape[1])]


def _design(X_values, add_intercept):
    if add_intercept:
        return np.column_stack([np.ones(X_values.shape[0]), X_values])
    return X_values


class LinearModel:
    """
    Fit linear regression model (like R's lm()) by streaming aggregation.

    Examples
    --------
    >>> import pandas as pd
    >>> from pystreamreg import lm
    >>>
    >>> # In-memory data, folded as 8 shards and merged
    >>> model = lm(y='mpg', X=['wt', 'hp'], data=mtcars, n_shards=8)
    >>>
    >>> # Data that does not fit in memory
    >>> chunks = pd.read_csv('big.csv', chunksize=100_000)
    >>> model = lm(y='mpg', X=['wt', 'hp'], data=chunks)
    >>>
    >>> model.summary()
    >>> model.coef         # Named coefficients
    >>> model.pvalues      # P-values for each coefficient
    >>> model.conf_int()   # Confidence intervals
    """

    def __init__(
        self,
        y: Union[str, np.ndarray],
        X: Union[List[str], np.ndarray],
        data: Optional[Union[pd.DataFrame, Iterable[pd.DataFrame]]] = None,
        add_intercept: bool = True,
        n_shards: int = 1,
        backend: str = 'auto',
        use_fp64: Optional[bool] = None
    ):
        """
        Fit linear regression model.

        Parameters
        ----------
        y : str or array
            Response variable
            - If string: column name in data
            - If array: numeric values
        X : list of str or array
            Predictor variables
            - If list of strings: column names in data
            - If array: numeric matrix (n × p)
        data : DataFrame or iterable of DataFrames, optional
            Dataset containing y and X. An iterable (e.g. a chunked
            ``pd.read_csv``) is consumed one chunk at a time; y and X
            must then be column names.
        add_intercept : bool
            Prepend a column of ones to X
        n_shards : int
            Number of contiguous shards folded independently and merged
            (in-memory data only)
        backend : str
            Decomposition backend: 'auto', 'cpu', 'gpu'
        use_fp64 : bool, optional
            Passed to get_backend
        """
        self.add_intercept = add_intercept
        self.backend = get_backend(backend, use_fp64=use_fp64)

        if data is not None and not isinstance(data, pd.DataFrame):
            state = self._fold_chunks(y, X, data)
        else:
            state = self._fold_shards(y, X, data, n_shards)

        self.var_names = (['Intercept'] if add_intercept else []) + self.X_names
        self.state = state
        self._result = linregr.final(state, backend=self.backend)

        self._compute_statistics()

    def _fold_shards(self, y, X, data, n_shards):
        """Fold in-memory data as ``n_shards`` independent accumulators."""
        y_values, self.y_name = _resolve_response(y, data)
        X_values, self.X_names = _resolve_design(X, data)
        if X_values.shape[0] != y_values.shape[0]:
            raise ValueError(
                f"X has {X_values.shape[0]} rows but y has {y_values.shape[0]} values"
            )
        design = _design(X_values, self.add_intercept)

        shards = []
        for rows in split_shards(len(y_values), n_shards):
            shards.append(linregr.transition_batch(
                linregr.LinRegrState(), y_values[rows], design[rows]
            ))
        logger.debug("Folded %d rows into %d shards", len(y_values), len(shards))
        return tree_merge(linregr.merge, shards)

    def _fold_chunks(self, y, X, chunks):
        """Fold an iterable of DataFrames, merging chunk by chunk."""
        if not isinstance(y, str) or not (
                isinstance(X, list) and all(isinstance(x, str) for x in X)):
            raise ValueError("y and X must be column names when data is chunked")

        self.y_name = y
        self.X_names = list(X)

        state = linregr.LinRegrState()
        n_chunks = 0
        for chunk in chunks:
            y_values, _ = _resolve_response(y, chunk)
            X_values, _ = _resolve_design(X, chunk)
            chunk_state = linregr.transition_batch(
                linregr.LinRegrState(), y_values, _design(X_values, self.add_intercept)
            )
            state = linregr.merge(state, chunk_state)
            n_chunks += 1
        logger.debug("Folded %d rows from %d chunks", state.num_rows, n_chunks)
        return state

    def _compute_statistics(self):
        """Expose accumulator results under R-style names."""
        result = self._result

        self.n_obs = result.num_rows
        self.n_coef = len(result.coef)
        self.coefficients = result.coef
        self.std_errors = result.std_err
        self.t_values = result.t_stats
        self.pvalues = result.p_values
        self.df_residual = result.df_residual
        self.condition_number = result.condition_no

        self.r_squared = result.r2
        self.rss = result.rss
        self.sigma = np.sqrt(result.variance)

        if self.df_residual <= 0:
            warnings.warn(
                f"No residual degrees of freedom ({self.n_obs} rows, "
                f"{self.n_coef} coefficients); standard errors are undefined",
                UserWarning
            )
        if self.condition_number > CONDITION_NUMBER_THRESHOLD:
            warnings.warn(
                f"X'X is ill-conditioned (condition number "
                f"{self.condition_number:.3e}); coefficients may be inaccurate",
                UserWarning
            )

        # Model degrees of freedom exclude the intercept
        p = self.n_coef - 1 if self.add_intercept else self.n_coef
        if self.df_residual > 0:
            self.adj_r_squared = 1 - (1 - self.r_squared) * (self.n_obs - 1) / self.df_residual
        else:
            self.adj_r_squared = np.nan

        if p > 0 and self.df_residual > 0 and result.rss > 0:
            self.f_statistic = (result.ess / p) / (result.rss / self.df_residual)
            self.f_pvalue = stats.f.sf(self.f_statistic, p, self.df_residual)
        else:
            self.f_statistic = np.nan
            self.f_pvalue = np.nan

    @property
    def coef(self):
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coefficients, index=self.var_names)

    def conf_int(self, alpha: float = 0.05):
        """
        Confidence intervals for coefficients.

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        t_crit = stats.t.ppf(1 - alpha/2, self.df_residual)
        lower = self.coefficients - t_crit * self.std_errors
        upper = self.coefficients + t_crit * self.std_errors

        return pd.DataFrame({
            'lower': lower,
            'upper': upper
        }, index=self.var_names)

    def summary(self):
        """Print summary of regression results (like R's summary.lm)."""
        print()
        print("="*80)
        print("LINEAR REGRESSION RESULTS")
        print("="*80)
        print()

        print(f"Dependent variable: {self.y_name}")
        print(f"Number of observations: {self.n_obs}")
        print(f"Degrees of freedom: {self.df_residual} (residual), "
              f"{self.n_coef - int(self.add_intercept)} (model)")
        print()

        print("Coefficients:")
        print("-"*80)
        print(f"{'Variable':<20} {'Estimate':>12} {'Std. Error':>12} {'t value':>10} {'Pr(>|t|)':>12}")
        print("-"*80)

        for i, name in enumerate(self.var_names):
            p = self.pvalues[i]
            if np.isnan(p):
                sig = ''
                p_str = 'NA'
            else:
                sig = _significance_stars(p)
                p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"

            print(f"{name:<20} {self.coefficients[i]:>12.4f} {self.std_errors[i]:>12.4f} "
                  f"{self.t_values[i]:>10.3f} {p_str:>12}{sig}")

        print("-"*80)
        print("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
        print()

        print(f"Residual standard error: {self.sigma:.4f} on {self.df_residual} degrees of freedom")
        print(f"Multiple R-squared:      {self.r_squared:.4f}")
        print(f"Adjusted R-squared:      {self.adj_r_squared:.4f}")

        if not np.isnan(self.f_statistic):
            f_pval_str = f"{self.f_pvalue:.4e}" if self.f_pvalue >= 0.0001 else "< 2.2e-16"
            print(f"F-statistic:             {self.f_statistic:.2f} on "
                  f"{self.n_coef - int(self.add_intercept)} and {self.df_residual} DF, "
                  f"p-value: {f_pval_str}")

        print(f"Condition number:        {self.condition_number:.4e}")
        print()
        print(f"Backend: {self.backend.name}")
        print("="*80)
        print()

    def predict(self, newdata: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """
        Predict response for new data.

        Parameters
        ----------
        newdata : DataFrame or array
            New predictor values
            - If DataFrame: must have columns matching self.X_names
            - If array: must have same number of columns as X

        Returns
        -------
        array
            Predicted values
        """
        if isinstance(newdata, pd.DataFrame):
            X_new = newdata[self.X_names].values
        else:
            X_new = np.asarray(newdata, dtype=np.float64)
            if X_new.ndim == 1:
                X_new = X_new[:, np.newaxis]

        return _design(X_new, self.add_intercept) @ self.coefficients

    def __repr__(self):
        return f"LinearModel(n={self.n_obs}, p={self.n_coef}, R²={self.r_squared:.3f})"


def _significance_stars(p: float) -> str:
    if p < 0.001:
        return ' ***'
    elif p < 0.01:
        return ' **'
    elif p < 0.05:
        return ' *'
    elif p < 0.1:
        return ' .'
    return ''


def lm(y, X, data=None, **kwargs):
    """
    Fit linear regression model (convenience function).

    Parameters
    ----------
    y : str or array
        Response variable
    X : list of str or array
        Predictor variables
    data : DataFrame or iterable of DataFrames, optional
        Dataset, whole or in chunks
    **kwargs
        Additional arguments passed to LinearModel

    Returns
    -------
    LinearModel
        Fitted model object

    Examples
    --------
    >>> model = lm(y='mpg', X=['wt', 'hp'], data=mtcars)
    >>> model.summary()
    >>>
    >>> # Stream a file too large for memory
    >>> model = lm(y='mpg', X=['wt', 'hp'],
    ...            data=pd.read_csv('cars.csv', chunksize=50_000))
    """
    return LinearModel(y=y, X=X, data=data, **kwargs)
