"""
Test the lm() interface: sharded and chunked folding, R-style output.
"""

import pytest
import numpy as np
import pandas as pd
from scipy import stats

from pystreamreg import lm, LinearModel
from pystreamreg.exceptions import InvalidInputError


@pytest.fixture
def frame(regression_data):
    X = regression_data['X']
    return pd.DataFrame({
        'y': regression_data['y'],
        'a': X[:, 0],
        'b': X[:, 1],
        'c': X[:, 2],
    })


def test_matches_lstsq(regression_data):
    y, design = regression_data['y'], regression_data['design']
    model = lm(y, regression_data['X'])
    expected = np.linalg.lstsq(design, y, rcond=None)[0]

    np.testing.assert_allclose(model.coefficients, expected, rtol=1e-8)
    assert model.n_obs == 200
    assert model.n_coef == 4
    assert model.df_residual == 196
    assert list(model.coef.index) == ['Intercept', 'x0', 'x1', 'x2']


def test_named_columns(frame):
    model = lm('y', ['a', 'b', 'c'], data=frame)
    assert model.y_name == 'y'
    assert list(model.coef.index) == ['Intercept', 'a', 'b', 'c']
    assert model.coef['b'] == pytest.approx(2.0, abs=0.05)


def test_shards_match_single_pass(frame):
    single = lm('y', ['a', 'b', 'c'], data=frame)
    sharded = lm('y', ['a', 'b', 'c'], data=frame, n_shards=7)

    np.testing.assert_allclose(sharded.coefficients, single.coefficients, rtol=1e-8)
    np.testing.assert_allclose(sharded.std_errors, single.std_errors, rtol=1e-6)
    assert sharded.state.num_rows == single.state.num_rows


def test_more_shards_than_rows():
    X = np.array([0.0, 1.0, 2.0, 3.0])
    model = lm(2 * X + 1 + np.array([0.1, -0.1, -0.1, 0.1]), X, n_shards=10)
    assert model.n_obs == 4
    assert model.coefficients[1] == pytest.approx(2.0, abs=0.1)


def test_chunked_data(frame):
    whole = lm('y', ['a', 'b', 'c'], data=frame)
    chunks = [frame.iloc[i:i + 64] for i in range(0, len(frame), 64)]
    streamed = lm('y', ['a', 'b', 'c'], data=iter(chunks))

    np.testing.assert_allclose(streamed.coefficients, whole.coefficients, rtol=1e-8)
    assert streamed.r_squared == pytest.approx(whole.r_squared, rel=1e-8)
    assert streamed.n_obs == 200


def test_chunked_data_needs_column_names(frame, regression_data):
    with pytest.raises(ValueError, match="column names"):
        lm(regression_data['y'], regression_data['X'], data=[frame])


def test_empty_chunks():
    with pytest.raises(InvalidInputError):
        lm('y', ['a'], data=[])


def test_row_mismatch():
    with pytest.raises(ValueError, match="rows"):
        lm(np.ones(5), np.ones((4, 2)))


def test_string_without_data():
    with pytest.raises(ValueError, match="Must provide data"):
        lm('y', ['a'])


def test_no_intercept():
    X = np.array([[1.0], [2.0], [3.0], [4.0]])
    y = 3 * X[:, 0] + np.array([0.01, -0.02, 0.02, -0.01])
    model = LinearModel(y, X, add_intercept=False)

    assert list(model.coef.index) == ['x0']
    assert model.df_residual == 3
    assert model.coefficients[0] == pytest.approx(3.0, abs=0.01)


def test_r_squared_and_f(frame):
    model = lm('y', ['a', 'b', 'c'], data=frame)
    design = np.column_stack([np.ones(200), frame[['a', 'b', 'c']].values])
    resid = frame['y'].values - design @ model.coefficients
    rss = resid @ resid
    tss = np.sum((frame['y'] - frame['y'].mean())**2)

    assert model.r_squared == pytest.approx(1 - rss / tss, rel=1e-8)
    assert model.adj_r_squared == pytest.approx(
        1 - (1 - model.r_squared) * 199 / 196, rel=1e-8)
    f_expected = ((tss - rss) / 3) / (rss / 196)
    assert model.f_statistic == pytest.approx(f_expected, rel=1e-6)
    assert model.f_pvalue == pytest.approx(stats.f.sf(f_expected, 3, 196), abs=1e-12)
    assert model.sigma == pytest.approx(np.sqrt(rss / 196), rel=1e-6)


def test_conf_int(frame):
    model = lm('y', ['a', 'b', 'c'], data=frame)
    ci = model.conf_int()
    t_crit = stats.t.ppf(0.975, 196)

    assert list(ci.columns) == ['lower', 'upper']
    np.testing.assert_allclose(ci['upper'] - ci['lower'],
                               2 * t_crit * model.std_errors, rtol=1e-10)
    assert np.all(ci['lower'] < model.coefficients)


def test_predict(frame):
    model = lm('y', ['a', 'b', 'c'], data=frame)
    new = frame.iloc[:5]
    expected = model.coefficients[0] + new[['a', 'b', 'c']].values @ model.coefficients[1:]

    np.testing.assert_allclose(model.predict(new), expected)
    np.testing.assert_allclose(model.predict(new[['a', 'b', 'c']].values), expected)


def test_summary(frame, capsys):
    model = lm('y', ['a', 'b', 'c'], data=frame)
    model.summary()
    out = capsys.readouterr().out

    assert 'LINEAR REGRESSION RESULTS' in out
    assert 'Intercept' in out
    assert 'Residual standard error' in out
    assert 'Condition number' in out
    assert 'cpu_fp64' in out or 'pytorch_fp64' in out


def test_repr(frame):
    assert repr(lm('y', ['a'], data=frame)).startswith('LinearModel(n=200, p=2')


def test_no_residual_df_warns():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    y = np.array([1.0, 2.0, 4.0])
    with pytest.warns(UserWarning, match="No residual degrees of freedom"):
        model = lm(y, X)
    assert model.df_residual == 0
    assert np.isnan(model.adj_r_squared)
    assert np.isnan(model.f_statistic)


def test_ill_conditioned_warns():
    rng = np.random.default_rng(0)
    a = rng.standard_normal(50)
    X = np.column_stack([a, a + 1e-9 * rng.standard_normal(50)])
    y = a + rng.standard_normal(50)
    with pytest.warns(UserWarning, match="ill-conditioned"):
        lm(y, X)
