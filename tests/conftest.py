"""
Shared fixtures: synthetic survival data and a batch reference for the
Cox maximum partial-likelihood estimate.
"""

import pytest
import numpy as np
from scipy.optimize import minimize


def partial_log_likelihood(beta, X, time, event, strata=None):
    """Partial log-likelihood and gradient, computed over whole arrays."""
    if strata is None:
        strata = np.zeros(len(time))

    total = 0.0
    grad = np.zeros(X.shape[1])
    for label in np.unique(strata):
        idx = np.flatnonzero(strata == label)
        order = np.argsort(-time[idx], kind='stable')
        Xs = X[idx][order]
        es = event[idx][order].astype(float)

        eta = Xs @ beta
        w = np.exp(eta)
        S = np.cumsum(w)
        H = np.cumsum(w[:, np.newaxis] * Xs, axis=0)

        total += np.sum(es * (eta - np.log(S)))
        grad += ((Xs - H / S[:, np.newaxis]) * es[:, np.newaxis]).sum(axis=0)
    return total, grad


def reference_cox_mple(X, time, event, strata=None):
    """Maximize the partial likelihood with BFGS."""
    def objective(beta):
        ll, grad = partial_log_likelihood(beta, X, time, event, strata)
        return -ll, -grad

    res = minimize(objective, np.zeros(X.shape[1]), jac=True, method='BFGS',
                   options={'gtol': 1e-10, 'maxiter': 1000})
    return res.x


@pytest.fixture
def cox_reference():
    return reference_cox_mple


@pytest.fixture
def cox_log_likelihood():
    return partial_log_likelihood


@pytest.fixture
def survival_data():
    """80 subjects, 2 covariates, about a third censored, no tied times."""
    rng = np.random.default_rng(12345)
    n = 80
    X = rng.standard_normal((n, 2))
    beta_true = np.array([0.8, -0.5])

    death = rng.exponential(1.0 / np.exp(X @ beta_true))
    censor = rng.exponential(2.0, n)
    time = np.minimum(death, censor)
    event = death <= censor
    strata = np.repeat([0, 1], n // 2)

    return {'X': X, 'time': time, 'event': event, 'strata': strata}


@pytest.fixture
def regression_data():
    """200 rows, intercept plus 3 predictors."""
    rng = np.random.default_rng(42)
    n, p = 200, 3
    X = rng.standard_normal((n, p))
    beta_true = np.array([1.0, 2.0, -1.5])
    y = 0.5 + X @ beta_true + 0.1 * rng.standard_normal(n)
    design = np.column_stack([np.ones(n), X])
    return {'X': X, 'y': y, 'design': design}
